"""initial podplay schema

Revision ID: 0001
Revises:
Create Date: 2025-03-01 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'tournaments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('slug', sa.String(200), nullable=False),
        sa.Column('date', sa.DateTime(), nullable=False),
        sa.Column('location', sa.String(200), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='upcoming'),
        sa.Column('max_pods', sa.Integer(), nullable=False, server_default='9'),
        sa.Column('bracket_pods', sa.Integer(), nullable=True),
        sa.Column('registration_open_date', sa.DateTime(), nullable=True),
        sa.Column('registration_deadline', sa.DateTime(), nullable=True),
        sa.Column('is_public', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.String(100), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_tournaments_slug', 'tournaments', ['slug'], unique=True)

    op.create_table(
        'pods',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tournament_id', sa.Integer(),
                  sa.ForeignKey('tournaments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('player1', sa.String(100), nullable=False),
        sa.Column('player2', sa.String(100), nullable=False),
        sa.Column('team_name', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('user_id', 'tournament_id', name='unique_user_tournament'),
    )

    op.create_table(
        'matches',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tournament_id', sa.Integer(),
                  sa.ForeignKey('tournaments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('stage', sa.String(20), nullable=False, server_default='pool'),
        sa.Column('game_number', sa.Integer(), nullable=False),
        sa.Column('round_number', sa.Integer(), nullable=False),
        sa.Column('bracket_position', sa.Integer(), nullable=True),
        sa.Column('court_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('scheduled_time', sa.String(20), nullable=True),
        sa.Column('pod_a_id', sa.Integer(), sa.ForeignKey('pods.id', ondelete='CASCADE'), nullable=True),
        sa.Column('pod_b_id', sa.Integer(), sa.ForeignKey('pods.id', ondelete='CASCADE'), nullable=True),
        sa.Column('pod_a_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pod_b_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('tournament_id', 'stage', 'game_number', name='unique_game_per_stage'),
    )
    op.create_index(
        'one_live_match_per_tournament',
        'matches',
        ['tournament_id'],
        unique=True,
        postgresql_where=sa.text("status = 'in_progress'"),
        sqlite_where=sa.text("status = 'in_progress'"),
    )

    op.create_table(
        'tournament_roles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tournament_id', sa.Integer(),
                  sa.ForeignKey('tournaments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('tournament_id', 'user_id', 'role', name='unique_role_per_user'),
    )
    op.create_index('ix_tournament_roles_user_id', 'tournament_roles', ['user_id'])

    op.create_table(
        'organizer_whitelist',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(100), nullable=False, unique=True),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('added_by', sa.String(100), nullable=False),
        sa.Column('added_at', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
    )


def downgrade():
    op.drop_table('organizer_whitelist')
    op.drop_index('ix_tournament_roles_user_id', table_name='tournament_roles')
    op.drop_table('tournament_roles')
    op.drop_index('one_live_match_per_tournament', table_name='matches')
    op.drop_table('matches')
    op.drop_table('pods')
    op.drop_index('ix_tournaments_slug', table_name='tournaments')
    op.drop_table('tournaments')
