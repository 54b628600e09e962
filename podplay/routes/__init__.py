from typing import Optional

from flask import current_app, jsonify

from ..identity import get_current_user


def parse_id(raw) -> Optional[int]:
    """Integer ids from path/query/body values; ``None`` when not an integer."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return None


def organizer_error(tournament_id: int, action: str = 'manage this tournament'):
    """API guard: a (response, status) pair unless the caller organizes the tournament."""
    user = get_current_user()
    if user is None:
        return jsonify({'error': 'Authentication required'}), 401
    if not current_app.registry.is_organizer(tournament_id, user.id):
        return jsonify({'error': f'Not authorized to {action}'}), 403
    return None
