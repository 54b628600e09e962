import os
import re
import logging

from flask import Flask, request, jsonify, Response, redirect, abort, current_app
from flask_migrate import Migrate
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.exceptions import HTTPException

from .config import config
from .models import db
from .identity import init_identity, get_current_user
from .tournament_registry import TournamentRegistry, parse_tournament_payload
from .match_engine import MatchEngine, MatchError
from .bracket_seeder import BracketUnavailableError
from .routes import parse_id, organizer_error
from .routes.tournament_pages import schedule_view, standings_view, teams_view
from shared.pubsub import PubSubClient

logger = logging.getLogger(__name__)

migrate = Migrate()

EMAIL_PATTERN = re.compile(r'\S+@\S+\.\S+')


def create_app(config_name: str = None) -> Flask:
    """Application factory for the podplay service."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    init_identity(app)

    # Live events are optional; without Redis nothing is broadcast
    redis_url = app.config.get('REDIS_URL')
    app.live = PubSubClient(redis_url) if redis_url else None

    if app.config.get('AUTO_CREATE_TABLES'):
        with app.app_context():
            db.create_all()

    # Store services on app for access in routes
    app.registry = TournamentRegistry(live=app.live)

    register_error_handlers(app)
    register_routes(app)
    register_api_routes(app)

    from .routes import play, tournament_pages
    app.register_blueprint(play.bp)
    app.register_blueprint(tournament_pages.bp)

    logger.info(f"podplay app created ({config_name})")
    return app


def register_error_handlers(app: Flask):

    @app.errorhandler(MatchError)
    def handle_match_error(e):
        return jsonify({'error': e.message}), e.status_code

    @app.errorhandler(BracketUnavailableError)
    def handle_bracket_unavailable(e):
        return jsonify({'error': str(e)}), 400

    @app.errorhandler(StaleDataError)
    def handle_stale_data(e):
        db.session.rollback()
        return jsonify({'error': 'Record was updated by someone else. Reload and try again.'}), 409

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'error': e.description}), e.code


def _default_tournament():
    """Tournament behind the slug-less /schedule, /standings and /teams pages."""
    slug = current_app.config.get('DEFAULT_TOURNAMENT_SLUG')
    tournament = current_app.registry.get_by_slug(slug) if slug else None
    if tournament is None:
        abort(404)
    return tournament


def register_routes(app: Flask):
    """Register page routes (JSON view models)."""

    @app.route('/')
    def index():
        """Home page with upcoming public tournaments."""
        tournaments = app.registry.list_tournaments(public=True)
        return jsonify({
            'page': 'home',
            'tournaments': [t.to_dict() for t in tournaments]
        })

    @app.route('/tournaments')
    def tournaments_list():
        """List public tournaments."""
        status = request.args.get('status')
        tournaments = app.registry.list_tournaments(status=status, public=True)
        return jsonify({
            'page': 'tournaments',
            'tournaments': [t.to_dict() for t in tournaments],
            'currentFilter': status,
            'error': request.args.get('error')
        })

    @app.route('/tournaments/create')
    def tournament_create():
        """Tournament creation form; whitelisted organizers only."""
        user = get_current_user()
        if user is None:
            return redirect('/tournaments?error=auth_required')
        if not app.registry.is_whitelisted_organizer(user.id):
            return redirect('/tournaments?error=not_authorized')

        return jsonify({
            'page': 'create',
            'user': {'id': user.id, 'email': user.email},
            'defaults': {'maxPods': 9, 'isPublic': True}
        })

    @app.route('/dashboard')
    def user_dashboard():
        """Tournaments where the current user holds a role."""
        user = get_current_user()
        if user is None:
            return redirect('/tournaments?error=auth_required')

        tournaments = []
        for t, role in app.registry.get_user_tournaments(user.id):
            item = t.to_dict()
            item['role'] = role
            tournaments.append(item)

        return jsonify({
            'page': 'dashboard',
            'user': {'id': user.id, 'email': user.email},
            'tournaments': tournaments,
            'canCreate': app.registry.is_whitelisted_organizer(user.id)
        })

    @app.route('/schedule')
    def schedule_page():
        tournament = _default_tournament()
        engine = MatchEngine(tournament.id, live=app.live)
        return jsonify(dict(page='schedule', tournament=tournament.to_dict(), **schedule_view(engine)))

    @app.route('/standings')
    def standings_page():
        tournament = _default_tournament()
        engine = MatchEngine(tournament.id, live=app.live)
        return jsonify(dict(page='standings', tournament=tournament.to_dict(), **standings_view(engine)))

    @app.route('/teams')
    def teams_page():
        tournament = _default_tournament()
        engine = MatchEngine(tournament.id, live=app.live)
        return jsonify(dict(page='teams', tournament=tournament.to_dict(), **teams_view(engine)))


def register_api_routes(app: Flask):
    """Register API routes."""

    # ==================== Tournament CRUD ====================

    @app.route('/api/tournaments', methods=['GET'])
    def api_list_tournaments():
        """List tournaments with optional filtering."""
        status = request.args.get('status')
        public = request.args.get('public')
        limit = request.args.get('limit', 50, type=int)
        offset = request.args.get('offset', 0, type=int)

        tournaments = app.registry.list_tournaments(
            status=status,
            public=None if public is None else public.lower() == 'true',
            limit=limit,
            offset=offset
        )

        return jsonify({
            'tournaments': [t.to_dict() for t in tournaments],
            'count': len(tournaments),
            'limit': limit,
            'offset': offset
        })

    @app.route('/api/tournaments', methods=['POST'])
    def api_create_tournament():
        """Create a new tournament; the creator becomes its organizer."""
        user = get_current_user()
        if user is None:
            return jsonify({'error': 'Authentication required'}), 401
        if not app.registry.is_whitelisted_organizer(user.id):
            return jsonify({'error': 'Not authorized to create tournaments'}), 403

        data = request.get_json(silent=True) or {}
        try:
            fields = parse_tournament_payload(data)
            fields.pop('status', None)
            tournament = app.registry.create_tournament(created_by=user.id, **fields)
        except ValueError as e:
            return jsonify({'error': str(e)}), 400
        except Exception:
            db.session.rollback()
            logger.exception("Tournament creation failed")
            return jsonify({
                'error': 'An unexpected error occurred while creating the tournament. Please try again.'
            }), 500

        return jsonify({
            'success': True,
            'tournament': tournament.to_dict(),
            'message': 'Tournament created successfully!'
        }), 201

    @app.route('/api/tournaments/<tournament_id>', methods=['GET'])
    def api_get_tournament(tournament_id):
        tid = parse_id(tournament_id)
        if tid is None:
            return jsonify({'error': 'Invalid tournament ID'}), 400

        tournament = app.registry.get_tournament(tid)
        if not tournament:
            return jsonify({'error': 'Tournament not found'}), 404
        return jsonify(tournament.to_dict())

    @app.route('/api/tournaments/<tournament_id>', methods=['PATCH'])
    def api_update_tournament(tournament_id):
        tid = parse_id(tournament_id)
        if tid is None:
            return jsonify({'error': 'Invalid tournament ID'}), 400

        denied = organizer_error(tid, 'edit this tournament')
        if denied:
            return denied

        if not app.registry.get_tournament(tid):
            return jsonify({'error': 'Tournament not found'}), 404

        data = request.get_json(silent=True) or {}
        try:
            changes = parse_tournament_payload(data, partial=True)
            success, message = app.registry.update_tournament(tid, changes)
        except ValueError as e:
            return jsonify({'error': str(e)}), 400
        except MatchError:
            raise
        except Exception:
            db.session.rollback()
            logger.exception(f"Tournament {tid} update failed")
            return jsonify({
                'error': 'An unexpected error occurred while updating the tournament. Please try again.'
            }), 500

        if not success:
            return jsonify({'error': message}), 400

        return jsonify({
            'success': True,
            'tournament': app.registry.get_tournament(tid).to_dict(),
            'message': message
        })

    @app.route('/api/tournaments/<tournament_id>', methods=['DELETE'])
    def api_delete_tournament(tournament_id):
        tid = parse_id(tournament_id)
        if tid is None:
            return jsonify({'error': 'Invalid tournament ID'}), 400

        denied = organizer_error(tid, 'delete this tournament')
        if denied:
            return denied

        if not app.registry.get_tournament(tid):
            return jsonify({'error': 'Tournament not found'}), 404

        success, message = app.registry.delete_tournament(tid)
        if not success:
            return jsonify({'error': message}), 400
        return jsonify({'success': True, 'message': message})

    @app.route('/api/tournaments/<tournament_id>/pods-count')
    def api_pods_count(tournament_id):
        tid = parse_id(tournament_id)
        if tid is None:
            return jsonify({'error': 'Invalid tournament ID'}), 400

        try:
            count = app.registry.get_pod_count(tid)
        except Exception:
            logger.exception(f"Failed to get pod count for tournament {tid}")
            return jsonify({'error': 'Failed to get pod count'}), 500

        return jsonify({'count': count})

    @app.route('/api/tournaments/<tournament_id>/role')
    def api_user_role(tournament_id):
        tid = parse_id(tournament_id)
        if tid is None:
            return jsonify({'error': 'Invalid tournament ID'}), 400

        user_id = request.args.get('userId')
        if not user_id:
            return jsonify({'role': None})

        try:
            role = app.registry.get_user_role(tid, user_id)
        except Exception:
            logger.exception(f"Failed to fetch role for {user_id} in tournament {tid}")
            return jsonify({'error': 'Failed to fetch user role'}), 500

        return jsonify({'role': role})

    # ==================== Pod Registration ====================

    @app.route('/api/register-pod', methods=['POST'])
    def api_register_pod():
        """Register the caller's pod for a tournament."""
        user = get_current_user()
        if user is None:
            return jsonify({'error': 'Authentication required'}), 401

        data = request.get_json(silent=True) or {}
        tid = parse_id(data.get('tournamentId'))
        email = (data.get('email') or '').strip()
        player1 = (data.get('player1') or '').strip()
        player2 = (data.get('player2') or '').strip()

        if tid is None or not email or not player1 or not player2:
            return jsonify({'error': 'Missing required fields'}), 400
        if not EMAIL_PATTERN.match(email):
            return jsonify({'error': 'Invalid email format'}), 400

        tournament = app.registry.get_tournament(tid)
        if not tournament:
            return jsonify({'error': 'Tournament not found'}), 404

        try:
            success, message, pod = app.registry.register_pod(
                tournament,
                user_id=user.id,
                email=email,
                player1=player1,
                player2=player2,
                team_name=(data.get('teamName') or '').strip() or None
            )
        except Exception:
            db.session.rollback()
            logger.exception(f"Registration failed for tournament {tid}")
            return jsonify({
                'error': 'An unexpected error occurred during registration. Please try again.'
            }), 500

        if not success:
            return jsonify({'error': message}), 400

        return jsonify({
            'success': True,
            'pod': pod.to_dict(),
            'message': message
        }), 201

    @app.route('/api/registration-status')
    def api_registration_status():
        raw = request.args.get('tournamentId')
        if raw is None:
            tournament = _default_tournament()
        else:
            tid = parse_id(raw)
            if tid is None:
                return jsonify({'error': 'Invalid tournament ID'}), 400
            tournament = app.registry.get_tournament(tid)
            if not tournament:
                return jsonify({'error': 'Tournament not found'}), 404

        try:
            return jsonify(app.registry.registration_status(tournament))
        except Exception:
            logger.exception(f"Failed to check registration status for tournament {tournament.id}")
            return jsonify({'error': 'Failed to check registration status'}), 500

    # ==================== Real-time Events (SSE) ====================

    @app.route('/api/v1/events/tournaments/<int:tournament_id>')
    def api_tournament_events(tournament_id: int):
        """SSE stream of live events for one tournament."""
        if app.live is None:
            return jsonify({'error': 'Live events are not available'}), 503

        if not app.registry.get_tournament(tournament_id):
            return jsonify({'error': 'Tournament not found'}), 404

        live = app.live

        def generate():
            yield f"data: {{\"type\":\"connected\",\"tournament_id\":{tournament_id}}}\n\n"
            for payload in live.listen(tournament_id):
                if payload is None:
                    yield ": keepalive\n\n"
                else:
                    yield f"data: {payload}\n\n"

        return Response(generate(), mimetype='text/event-stream', headers={
            'Cache-Control': 'no-cache',
            'X-Accel-Buffering': 'no'
        })

    # ==================== Health Check ====================

    @app.route('/health')
    def health_check():
        """Health check endpoint."""
        try:
            db.session.execute(db.text('SELECT 1'))
            db_ok = True
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            db_ok = False

        if app.live is None:
            redis_status = 'disabled'
            redis_ok = True
        else:
            redis_ok = app.live.ping()
            redis_status = 'connected' if redis_ok else 'disconnected'

        status = 'healthy' if (redis_ok and db_ok) else 'unhealthy'
        code = 200 if status == 'healthy' else 503

        return jsonify({
            'status': status,
            'redis': redis_status,
            'database': 'connected' if db_ok else 'disconnected'
        }), code
