from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

from .names import first_names, combined_first_names

db = SQLAlchemy()


def _iso(value):
    return value.isoformat() if value else None


class Tournament(db.Model):
    __tablename__ = 'tournaments'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(200), unique=True, nullable=False, index=True)
    date = db.Column(db.DateTime, nullable=False)
    location = db.Column(db.String(200), nullable=True)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default='upcoming')
    max_pods = db.Column(db.Integer, nullable=False, default=9)
    bracket_pods = db.Column(db.Integer, nullable=True)  # None = every pod qualifies
    registration_open_date = db.Column(db.DateTime, nullable=True)
    registration_deadline = db.Column(db.DateTime, nullable=True)
    is_public = db.Column(db.Boolean, nullable=False, default=True)

    tournament_type = db.Column(db.String(20), nullable=False, default='pod_2')  # pod_2, pod_3, set_teams
    level = db.Column(db.String(10), nullable=True)  # c, b, a, open
    max_teams = db.Column(db.Integer, nullable=True)

    # Scoring rules; an empty column falls back to the app config
    start_points = db.Column(db.Integer, nullable=False, default=0)
    end_points = db.Column(db.Integer, nullable=True)
    win_by_two = db.Column(db.Boolean, nullable=True)
    cap = db.Column(db.Integer, nullable=True)
    game3_end_points = db.Column(db.Integer, nullable=True)

    pool_play_description = db.Column(db.Text, nullable=True)
    bracket_play_description = db.Column(db.Text, nullable=True)
    rules_description = db.Column(db.Text, nullable=True)
    prize_info = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(100), nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    pods = db.relationship('Pod', back_populates='tournament', cascade='all, delete-orphan',
                           order_by='Pod.id')
    matches = db.relationship('Match', back_populates='tournament', cascade='all, delete-orphan')
    roles = db.relationship('TournamentRole', back_populates='tournament', cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'date': _iso(self.date),
            'location': self.location,
            'description': self.description,
            'status': self.status,
            'max_pods': self.max_pods,
            'bracket_pods': self.bracket_pods,
            'pod_count': len(self.pods),
            'registration_open_date': _iso(self.registration_open_date),
            'registration_deadline': _iso(self.registration_deadline),
            'is_public': self.is_public,
            'tournament_type': self.tournament_type,
            'level': self.level,
            'max_teams': self.max_teams,
            'scoring_rules': {
                'start_points': self.start_points,
                'end_points': self.end_points,
                'win_by_two': self.win_by_two,
                'cap': self.cap,
                'game3_end_points': self.game3_end_points,
            },
            'pool_play_description': self.pool_play_description,
            'bracket_play_description': self.bracket_play_description,
            'rules_description': self.rules_description,
            'prize_info': self.prize_info,
            'created_by': self.created_by,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Pod(db.Model):
    __tablename__ = 'pods'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id', ondelete='CASCADE'), nullable=False)
    user_id = db.Column(db.String(100), nullable=False)  # identity provider user id
    email = db.Column(db.String(320), nullable=False)
    name = db.Column(db.String(200), nullable=False)  # "Player1 & Player2"
    player1 = db.Column(db.String(100), nullable=False)
    player2 = db.Column(db.String(100), nullable=False)
    team_name = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    tournament = db.relationship('Tournament', back_populates='pods')

    __table_args__ = (
        db.UniqueConstraint('user_id', 'tournament_id', name='unique_user_tournament'),
    )

    @property
    def display_name(self) -> str:
        return self.team_name or combined_first_names(self.name)

    def to_dict(self, number: int = None):
        return {
            'id': self.id,
            'number': number,
            'tournament_id': self.tournament_id,
            'name': self.display_name,
            'team_name': self.team_name,
            'player_names': combined_first_names(self.name),
            'player1': first_names(self.player1),
            'player2': first_names(self.player2),
        }


class Match(db.Model):
    __tablename__ = 'matches'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id', ondelete='CASCADE'), nullable=False)
    stage = db.Column(db.String(20), nullable=False, default='pool')  # 'pool' or 'bracket'
    game_number = db.Column(db.Integer, nullable=False)
    round_number = db.Column(db.Integer, nullable=False)
    bracket_position = db.Column(db.Integer, nullable=True)
    court_number = db.Column(db.Integer, nullable=False, default=1)
    scheduled_time = db.Column(db.String(20), nullable=True)  # "10:00 AM"

    # Bracket slots stay empty until the feeding match completes
    pod_a_id = db.Column(db.Integer, db.ForeignKey('pods.id', ondelete='CASCADE'), nullable=True)
    pod_b_id = db.Column(db.Integer, db.ForeignKey('pods.id', ondelete='CASCADE'), nullable=True)
    pod_a_score = db.Column(db.Integer, nullable=False, default=0)
    pod_b_score = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(20), nullable=False, default='pending')  # pending, in_progress, completed
    started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tournament = db.relationship('Tournament', back_populates='matches')
    pod_a = db.relationship('Pod', foreign_keys=[pod_a_id])
    pod_b = db.relationship('Pod', foreign_keys=[pod_b_id])

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'stage', 'game_number', name='unique_game_per_stage'),
        # At most one live match per tournament
        db.Index(
            'one_live_match_per_tournament',
            'tournament_id',
            unique=True,
            postgresql_where=db.text("status = 'in_progress'"),
            sqlite_where=db.text("status = 'in_progress'"),
        ),
    )
    __mapper_args__ = {'version_id_col': version}

    @property
    def winner_pod_id(self):
        if self.status != 'completed' or self.pod_a_score == self.pod_b_score:
            return None
        return self.pod_a_id if self.pod_a_score > self.pod_b_score else self.pod_b_id

    @property
    def loser_pod_id(self):
        winner = self.winner_pod_id
        if winner is None:
            return None
        return self.pod_b_id if winner == self.pod_a_id else self.pod_a_id

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'stage': self.stage,
            'game_number': self.game_number,
            'round_number': self.round_number,
            'bracket_position': self.bracket_position,
            'court_number': self.court_number,
            'scheduled_time': self.scheduled_time,
            'team_a_pod': self.pod_a_id,
            'team_b_pod': self.pod_b_id,
            'team_a_score': self.pod_a_score,
            'team_b_score': self.pod_b_score,
            'status': self.status,
            'winner_pod': self.winner_pod_id,
            'version': self.version,
            'started_at': _iso(self.started_at),
            'completed_at': _iso(self.completed_at),
            'updated_at': _iso(self.updated_at),
        }


class TournamentRole(db.Model):
    __tablename__ = 'tournament_roles'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id', ondelete='CASCADE'), nullable=False)
    user_id = db.Column(db.String(100), nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False)  # organizer, participant
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    tournament = db.relationship('Tournament', back_populates='roles')

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'user_id', 'role', name='unique_role_per_user'),
    )


class OrganizerWhitelist(db.Model):
    __tablename__ = 'organizer_whitelist'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(100), unique=True, nullable=False)
    email = db.Column(db.String(320), nullable=False)
    added_by = db.Column(db.String(100), nullable=False)
    added_at = db.Column(db.DateTime, default=datetime.utcnow)
    notes = db.Column(db.Text, nullable=True)
