"""
Per-tournament pages under /tournaments/<slug>.

Every page resolves the tournament from its slug (404 when unknown) and the
current user before the view runs; both are exposed on ``g``. Pages return
the JSON view model a client renders.
"""
from flask import Blueprint, jsonify, redirect, g, abort, current_app

from ..identity import get_current_user
from ..match_engine import MatchEngine, POOL
from shared.state_machine import TournamentStateMachine, TournamentState

bp = Blueprint('tournament_pages', __name__, url_prefix='/tournaments/<slug>')


def schedule_view(engine: MatchEngine) -> dict:
    current = engine.get_current_match()
    next_up = engine.get_next_pending_match(POOL)
    return {
        'currentGame': current.to_dict() if current else None,
        'nextGame': next_up.to_dict() if next_up else None,
        'games': [m.to_dict() for m in engine.get_pool_matches()],
        'pods': engine.get_pods_view(),
    }


def standings_view(engine: MatchEngine) -> dict:
    return {
        'standings': [row.to_dict() for row in engine.get_standings()],
        'gameLog': [m.to_dict() for m in engine.get_matches_log()],
        'poolPlayComplete': engine.pool_play_complete(),
    }


def teams_view(engine: MatchEngine) -> dict:
    pods = engine.get_pods_view()
    return {'pods': pods, 'count': len(pods)}


@bp.url_value_preprocessor
def load_tournament(endpoint, values):
    slug = values.pop('slug', None)
    tournament = current_app.registry.get_by_slug(slug) if slug else None
    if tournament is None:
        abort(404)

    g.tournament = tournament
    g.user = get_current_user()
    g.role = current_app.registry.get_user_role(tournament.id, g.user.id) if g.user else None


def _layout(**page) -> dict:
    """Context shared by every page under the tournament."""
    sm = TournamentStateMachine.from_state_string(g.tournament.status)
    body = {
        'tournament': g.tournament.to_dict(),
        'user': {'id': g.user.id, 'email': g.user.email} if g.user else None,
        'role': g.role,
        'isOrganizer': g.role == 'organizer',
        'formAccess': sm.form_access,
    }
    body.update(page)
    return body


def _engine() -> MatchEngine:
    return MatchEngine(g.tournament.id, live=current_app.live)


def _tournament_root():
    return redirect(f"/tournaments/{g.tournament.slug}")


@bp.route('')
def overview():
    return jsonify(_layout(
        page='overview',
        registration=current_app.registry.registration_status(g.tournament)
    ))


@bp.route('/register')
def register():
    return jsonify(_layout(
        page='register',
        registration=current_app.registry.registration_status(g.tournament),
        requiresLogin=g.user is None
    ))


@bp.route('/schedule')
def schedule():
    return jsonify(_layout(page='schedule', **schedule_view(_engine())))


@bp.route('/standings')
def standings():
    return jsonify(_layout(page='standings', **standings_view(_engine())))


@bp.route('/teams')
def teams():
    return jsonify(_layout(page='teams', **teams_view(_engine())))


@bp.route('/bracket')
def bracket():
    engine = _engine()
    if g.tournament.status == TournamentState.UPCOMING.value:
        return jsonify(_layout(
            page='bracket',
            available=False,
            message='The bracket will be available once pool play begins.',
            pods=engine.get_pods_view()
        ))

    return jsonify(_layout(
        page='bracket',
        available=True,
        bracket=engine.get_bracket(),
        standings=[row.to_dict() for row in engine.get_standings()],
        pods=engine.get_pods_view()
    ))


@bp.route('/settings')
def settings():
    if g.role != 'organizer':
        return _tournament_root()

    sm = TournamentStateMachine.from_state_string(g.tournament.status)
    return jsonify(_layout(
        page='settings',
        allowedActions=sm.allowed_actions,
        podCount=current_app.registry.get_pod_count(g.tournament.id)
    ))


@bp.route('/scorekeeper')
def scorekeeper():
    if g.role != 'organizer':
        return _tournament_root()

    engine = _engine()
    view = schedule_view(engine)
    return jsonify(_layout(
        page='scorekeeper',
        currentGame=view['currentGame'],
        nextGame=view['nextGame'],
        poolPlayComplete=engine.pool_play_complete(),
        bracketGames=[m.to_dict() for m in engine.get_bracket_matches()],
        pods=engine.get_pods_view()
    ))
