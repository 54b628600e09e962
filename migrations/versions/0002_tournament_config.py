"""tournament type, level, scoring rules and descriptions

Revision ID: 0002
Revises: 0001
Create Date: 2025-03-15 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0002'
down_revision = '0001'
branch_labels = None
depends_on = None

NEW_COLUMNS = (
    'tournament_type', 'level', 'max_teams',
    'start_points', 'end_points', 'win_by_two', 'cap', 'game3_end_points',
    'pool_play_description', 'bracket_play_description', 'rules_description', 'prize_info',
)


def upgrade():
    with op.batch_alter_table('tournaments') as batch_op:
        batch_op.add_column(sa.Column('tournament_type', sa.String(20), nullable=False, server_default='pod_2'))
        batch_op.add_column(sa.Column('level', sa.String(10), nullable=True))
        batch_op.add_column(sa.Column('max_teams', sa.Integer(), nullable=True))
        batch_op.add_column(sa.Column('start_points', sa.Integer(), nullable=False, server_default='0'))
        batch_op.add_column(sa.Column('end_points', sa.Integer(), nullable=True))
        batch_op.add_column(sa.Column('win_by_two', sa.Boolean(), nullable=True))
        batch_op.add_column(sa.Column('cap', sa.Integer(), nullable=True))
        batch_op.add_column(sa.Column('game3_end_points', sa.Integer(), nullable=True))
        batch_op.add_column(sa.Column('pool_play_description', sa.Text(), nullable=True))
        batch_op.add_column(sa.Column('bracket_play_description', sa.Text(), nullable=True))
        batch_op.add_column(sa.Column('rules_description', sa.Text(), nullable=True))
        batch_op.add_column(sa.Column('prize_info', sa.Text(), nullable=True))


def downgrade():
    with op.batch_alter_table('tournaments') as batch_op:
        for column in reversed(NEW_COLUMNS):
            batch_op.drop_column(column)
