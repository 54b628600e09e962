from flask import Blueprint, request, jsonify, current_app

from . import parse_id, organizer_error
from ..match_engine import MatchEngine, POOL, BRACKET
from ..models import db, Match

bp = Blueprint('play', __name__)


def get_match_engine(tournament_id: int) -> MatchEngine:
    return MatchEngine(tournament_id, live=current_app.live)


def _tournament_id_from_body():
    data = request.get_json(silent=True) or {}
    return parse_id(data.get('tournamentId'))


def _match_or_404(match_id: int):
    match = db.session.get(Match, match_id)
    if not match:
        return None, (jsonify({'error': 'Game not found'}), 404)
    return match, None


def _start_game(stage: str):
    tournament_id = _tournament_id_from_body()
    if tournament_id is None:
        return jsonify({'error': 'tournamentId is required'}), 400

    denied = organizer_error(tournament_id, 'run games for this tournament')
    if denied:
        return denied

    engine = get_match_engine(tournament_id)
    match = engine.start_next_match(stage)
    return jsonify({
        'success': True,
        'game': match.to_dict(),
        'message': f'Game {match.game_number} started'
    })


# --- Pool games ---

@bp.route('/api/games/start', methods=['POST'])
def start_game():
    """Start the next pending pool game."""
    return _start_game(POOL)


@bp.route('/api/games/<int:match_id>/score', methods=['PATCH'])
@bp.route('/api/bracket/games/<int:match_id>/score', methods=['PATCH'])
def update_score(match_id):
    match, missing = _match_or_404(match_id)
    if missing:
        return missing

    denied = organizer_error(match.tournament_id, 'score games for this tournament')
    if denied:
        return denied

    data = request.get_json(silent=True) or {}
    if 'teamAScore' not in data or 'teamBScore' not in data:
        return jsonify({'error': 'teamAScore and teamBScore are required'}), 400

    engine = get_match_engine(match.tournament_id)
    match = engine.update_score(
        match_id,
        data['teamAScore'],
        data['teamBScore'],
        expected_version=data.get('version')
    )
    return jsonify({'success': True, 'game': match.to_dict()})


@bp.route('/api/games/<int:match_id>/complete', methods=['POST'])
@bp.route('/api/bracket/games/<int:match_id>/complete', methods=['POST'])
def complete_game(match_id):
    match, missing = _match_or_404(match_id)
    if missing:
        return missing

    denied = organizer_error(match.tournament_id, 'complete games for this tournament')
    if denied:
        return denied

    engine = get_match_engine(match.tournament_id)
    match = engine.complete_match(match_id)

    body = {
        'success': True,
        'game': match.to_dict(),
        'message': 'Game completed'
    }
    if match.stage == POOL:
        body['poolPlayComplete'] = engine.pool_play_complete()
    else:
        body['champion'] = engine.get_bracket()['champion']
    return jsonify(body)


# --- Bracket ---

@bp.route('/api/bracket/initialize', methods=['POST'])
def initialize_bracket():
    tournament_id = _tournament_id_from_body()
    if tournament_id is None:
        return jsonify({'error': 'tournamentId is required'}), 400

    denied = organizer_error(tournament_id, 'create the bracket')
    if denied:
        return denied

    engine = get_match_engine(tournament_id)
    matches = engine.initialize_bracket()
    return jsonify({
        'success': True,
        'games': [m.to_dict() for m in matches],
        'bracket': engine.get_bracket()
    })


@bp.route('/api/bracket/reset', methods=['POST'])
def reset_bracket():
    tournament_id = _tournament_id_from_body()
    if tournament_id is None:
        return jsonify({'error': 'tournamentId is required'}), 400

    denied = organizer_error(tournament_id, 'reset the bracket')
    if denied:
        return denied

    engine = get_match_engine(tournament_id)
    matches = engine.reset_bracket()
    return jsonify({
        'success': True,
        'games': [m.to_dict() for m in matches],
        'message': 'Bracket reset'
    })


@bp.route('/api/bracket/games/start', methods=['POST'])
def start_bracket_game():
    """Start the next bracket game whose slots are both filled."""
    return _start_game(BRACKET)


# --- Reads ---

@bp.route('/api/tournaments/<int:tournament_id>/games')
def list_games(tournament_id):
    engine = get_match_engine(tournament_id)
    current = engine.get_current_match()
    next_up = engine.get_next_pending_match(POOL)
    return jsonify({
        'current': current.to_dict() if current else None,
        'next': next_up.to_dict() if next_up else None,
        'games': [m.to_dict() for m in engine.get_pool_matches()],
        'bracket': [m.to_dict() for m in engine.get_bracket_matches()]
    })


@bp.route('/api/tournaments/<int:tournament_id>/standings')
def get_standings(tournament_id):
    engine = get_match_engine(tournament_id)
    return jsonify({
        'standings': [row.to_dict() for row in engine.get_standings()],
        'poolPlayComplete': engine.pool_play_complete()
    })


@bp.route('/api/tournaments/<int:tournament_id>/bracket')
def get_bracket(tournament_id):
    engine = get_match_engine(tournament_id)
    return jsonify(engine.get_bracket())
