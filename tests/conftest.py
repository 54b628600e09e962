"""
Pytest configuration and fixtures for podplay tests.
"""
import os
import sys
from datetime import datetime

import pytest
from flask import g

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'

from podplay.app import create_app
from podplay.identity import AuthUser
from podplay.models import db, Tournament, Pod, Match, TournamentRole, OrganizerWhitelist

ORGANIZER_ID = 'organizer-1'
AUTH_HEADERS = {'Authorization': 'Bearer test-token'}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app('testing')

    @app.before_request
    def reset_login_state():
        # Test requests share the session-wide app context, so Flask-Login's
        # cached user would otherwise carry over between requests.
        g.pop('_login_user', None)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Clear all tables before each test."""
    db.session.remove()

    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


@pytest.fixture
def login_as(app, mocker):
    """Make requests carrying AUTH_HEADERS resolve to the given user."""
    def _login(user_id: str = ORGANIZER_ID, email: str = 'organizer@example.com') -> AuthUser:
        user = AuthUser(id=user_id, email=email)
        mocker.patch.object(app.identity, 'get_user', return_value=user)
        return user
    return _login


@pytest.fixture
def auth_headers():
    return dict(AUTH_HEADERS)


@pytest.fixture
def whitelisted_organizer(db_session):
    entry = OrganizerWhitelist(user_id=ORGANIZER_ID, email='organizer@example.com', added_by='test')
    db.session.add(entry)
    db.session.commit()
    return entry


@pytest.fixture
def sample_tournament(app, db_session):
    """An upcoming tournament organized by ORGANIZER_ID."""
    tournament = Tournament(
        name='Spring Classic',
        slug='spring-classic-apr-2025',
        date=datetime(2025, 4, 12, 9, 0),
        location='Riverside Courts',
        status='upcoming',
        max_pods=9,
        created_by=ORGANIZER_ID
    )
    db.session.add(tournament)
    db.session.flush()
    db.session.add(TournamentRole(tournament_id=tournament.id, user_id=ORGANIZER_ID, role='organizer'))
    db.session.commit()

    db.session.refresh(tournament)
    return tournament


def make_pods(tournament, rosters):
    pods = []
    start = Pod.query.filter_by(tournament_id=tournament.id).count()
    for i, (player1, player2, team_name) in enumerate(rosters, start=start):
        pod = Pod(
            tournament_id=tournament.id,
            user_id=f'user-{i + 1}',
            email=f'pod{i + 1}@example.com',
            name=f'{player1} & {player2}',
            player1=player1,
            player2=player2,
            team_name=team_name
        )
        db.session.add(pod)
        pods.append(pod)
    db.session.commit()

    for pod in pods:
        db.session.refresh(pod)
    return pods


@pytest.fixture
def sample_pods(app, db_session, sample_tournament):
    """Four pods registered for the sample tournament (A, B, C, D by id)."""
    return make_pods(sample_tournament, [
        ('Alice Adams', 'Aaron Abbott', 'Aces'),
        ('Bella Brown', 'Ben Baker', 'Blockers'),
        ('Cara Cole', 'Carl Cruz', None),
        ('Dana Diaz', 'Dev Doyle', 'Diggers'),
    ])


@pytest.fixture
def active_tournament(app, db_session, sample_tournament, sample_pods):
    """Sample tournament moved to active with its round robin laid out."""
    success, message = app.registry.set_status(sample_tournament.id, 'active')
    assert success, message
    db.session.refresh(sample_tournament)
    return sample_tournament


def add_match(tournament, pod_a, pod_b, score_a=0, score_b=0, status='completed',
              stage='pool', game_number=1, round_number=1, bracket_position=None):
    match = Match(
        tournament_id=tournament.id,
        stage=stage,
        game_number=game_number,
        round_number=round_number,
        bracket_position=bracket_position,
        pod_a_id=pod_a.id if pod_a else None,
        pod_b_id=pod_b.id if pod_b else None,
        pod_a_score=score_a,
        pod_b_score=score_b,
        status=status,
        completed_at=datetime.utcnow() if status == 'completed' else None
    )
    db.session.add(match)
    db.session.commit()
    db.session.refresh(match)
    return match


@pytest.fixture
def mock_live(mocker):
    """Stand-in for the Redis-backed PubSubClient."""
    live = mocker.MagicMock()
    live.broadcast.return_value = True
    return live
