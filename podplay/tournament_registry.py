import logging
from datetime import datetime, timezone
from typing import Optional, Tuple, List

from sqlalchemy.exc import IntegrityError

from .models import db, Tournament, Pod, TournamentRole, OrganizerWhitelist
from .match_engine import MatchEngine
from .names import generate_slug, ensure_unique_slug, is_valid_slug
from .tournament_templates import TOURNAMENT_TYPES, LEVELS, DEFAULT_TYPE, get_template_for_type
from shared.state_machine import TournamentStateMachine, TournamentState, TransitionError
from shared.events import Event, EventType, state_changed_event

logger = logging.getLogger(__name__)

ORGANIZER = 'organizer'
PARTICIPANT = 'participant'

# JSON field -> column
TOURNAMENT_FIELDS = {
    'name': 'name',
    'slug': 'slug',
    'date': 'date',
    'location': 'location',
    'description': 'description',
    'maxPods': 'max_pods',
    'bracketPods': 'bracket_pods',
    'registrationOpenDate': 'registration_open_date',
    'registrationDeadline': 'registration_deadline',
    'isPublic': 'is_public',
    'status': 'status',
    'tournamentType': 'tournament_type',
    'level': 'level',
    'maxTeams': 'max_teams',
    'startPoints': 'start_points',
    'endPoints': 'end_points',
    'winByTwo': 'win_by_two',
    'cap': 'cap',
    'game3EndPoints': 'game3_end_points',
    'poolPlayDescription': 'pool_play_description',
    'bracketPlayDescription': 'bracket_play_description',
    'rulesDescription': 'rules_description',
    'prizeInfo': 'prize_info',
}

DATE_FIELDS = ('date', 'registration_open_date', 'registration_deadline')
TEXT_FIELDS = (
    'description', 'pool_play_description', 'bracket_play_description', 'rules_description', 'prize_info'
)
# Optional point settings; null clears them
POINT_FIELDS = {'end_points': 'endPoints', 'cap': 'cap', 'game3_end_points': 'game3EndPoints'}


def parse_datetime(value) -> Optional[datetime]:
    """Parse an ISO date/datetime into a naive UTC datetime."""
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid date: {value}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _positive_int(value, label: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{label} must be a whole number")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{label} must be a whole number")
    if number != value and not isinstance(value, str):
        raise ValueError(f"{label} must be a whole number")
    return number


def parse_tournament_payload(data: dict, partial: bool = False) -> dict:
    """Validate a tournament request body and map it onto column names.

    Raises ``ValueError`` with a user facing message on invalid input.
    """
    if not partial:
        if not data.get('name') or not data.get('date') or not data.get('location'):
            raise ValueError("Missing required fields")

    changes = {}
    for field, column in TOURNAMENT_FIELDS.items():
        if field in data:
            changes[column] = data[field]

    if 'name' in changes and not str(changes['name'] or '').strip():
        raise ValueError("Tournament name is required")

    for column in DATE_FIELDS:
        if column in changes:
            changes[column] = parse_datetime(changes[column])
    if 'date' in changes and changes['date'] is None:
        raise ValueError("Tournament date is required")

    for column in TEXT_FIELDS:
        if column in changes:
            changes[column] = changes[column] or None

    if changes.get('slug') is not None and not is_valid_slug(changes['slug']):
        raise ValueError("Invalid slug format. Use lowercase letters, numbers, and hyphens only.")

    if 'max_pods' in changes:
        changes['max_pods'] = _positive_int(changes['max_pods'], "maxPods")
        if changes['max_pods'] < 2:
            raise ValueError("Tournament must allow at least 2 teams")

    if changes.get('bracket_pods') is not None:
        changes['bracket_pods'] = _positive_int(changes['bracket_pods'], "bracketPods")
        if changes['bracket_pods'] < 2:
            raise ValueError("At least 2 pods must qualify for the bracket")

    if 'is_public' in changes and not isinstance(changes['is_public'], bool):
        raise ValueError("isPublic must be true or false")

    # winByTwo may be null to fall back to the default margin
    if changes.get('win_by_two') is not None and not isinstance(changes['win_by_two'], bool):
        raise ValueError("winByTwo must be true or false")

    if 'status' in changes and changes['status'] not in [s.value for s in TournamentState]:
        raise ValueError(f"Unknown tournament status '{changes['status']}'")

    if 'tournament_type' in changes and changes['tournament_type'] not in TOURNAMENT_TYPES:
        raise ValueError(f"tournamentType must be one of: {', '.join(TOURNAMENT_TYPES)}")

    if 'level' in changes:
        changes['level'] = changes['level'] or None
        if changes['level'] is not None and changes['level'] not in LEVELS:
            raise ValueError(f"level must be one of: {', '.join(LEVELS)}")

    if changes.get('max_teams') is not None:
        changes['max_teams'] = _positive_int(changes['max_teams'], "maxTeams")
        if changes['max_teams'] < 2:
            raise ValueError("Tournament must allow at least 2 teams")

    if 'start_points' in changes:
        changes['start_points'] = _positive_int(changes['start_points'] or 0, "startPoints")
        if changes['start_points'] < 0:
            raise ValueError("startPoints cannot be negative")

    for column, label in POINT_FIELDS.items():
        if changes.get(column) is not None:
            changes[column] = _positive_int(changes[column], label)
            if changes[column] < 1:
                raise ValueError(f"{label} must be at least 1")

    check_scoring_rules(changes)

    return changes


def check_scoring_rules(rules: dict):
    """Cross-field checks over whichever point settings are present."""
    start = rules.get('start_points')
    end = rules.get('end_points')
    cap = rules.get('cap')
    if start is not None and end is not None and start >= end:
        raise ValueError("startPoints must be lower than endPoints")
    if end is not None and cap is not None and cap < end:
        raise ValueError("cap cannot be lower than endPoints")


class TournamentRegistry:
    """
    Manages tournament records:
    - Create/update/delete tournaments, resolve them by id or slug
    - Drive the upcoming -> active -> completed lifecycle
    - Organizer/participant roles and the organizer whitelist
    - Pod registration
    """

    def __init__(self, live=None):
        self.live = live

    def _broadcast(self, event: Event):
        if self.live:
            self.live.broadcast(event)

    # ==================== Tournaments ====================

    def create_tournament(
        self,
        created_by: str,
        name: str,
        date: datetime,
        location: str = None,
        description: str = None,
        max_pods: int = 9,
        bracket_pods: int = None,
        registration_open_date: datetime = None,
        registration_deadline: datetime = None,
        is_public: bool = True,
        slug: str = None,
        tournament_type: str = DEFAULT_TYPE,
        level: str = None,
        max_teams: int = None,
        start_points: int = 0,
        end_points: int = None,
        win_by_two: bool = None,
        cap: int = None,
        game3_end_points: int = None,
        pool_play_description: str = None,
        bracket_play_description: str = None,
        rules_description: str = None,
        prize_info: str = None
    ) -> Tournament:
        """Create an upcoming tournament; the creator becomes its organizer.

        Empty pool and bracket descriptions are filled from the template for
        ``tournament_type``.
        """
        if max_pods < 2:
            raise ValueError("Tournament must allow at least 2 teams")
        if tournament_type not in TOURNAMENT_TYPES:
            raise ValueError(f"tournamentType must be one of: {', '.join(TOURNAMENT_TYPES)}")
        check_scoring_rules({'start_points': start_points, 'end_points': end_points, 'cap': cap})

        template = get_template_for_type(tournament_type)

        if slug:
            if not is_valid_slug(slug):
                raise ValueError("Invalid slug format. Use lowercase letters, numbers, and hyphens only.")
            if self.get_by_slug(slug):
                raise ValueError("This URL slug is already taken. Please choose a different one.")
        else:
            slug = ensure_unique_slug(generate_slug(name, date), self._slug_taken)

        tournament = Tournament(
            name=name,
            slug=slug,
            date=date,
            location=location,
            description=description,
            status=TournamentState.UPCOMING.value,
            max_pods=max_pods,
            bracket_pods=bracket_pods,
            registration_open_date=registration_open_date,
            registration_deadline=registration_deadline,
            is_public=is_public,
            tournament_type=tournament_type,
            level=level,
            max_teams=max_teams,
            start_points=start_points or 0,
            end_points=end_points,
            win_by_two=win_by_two,
            cap=cap,
            game3_end_points=game3_end_points,
            pool_play_description=pool_play_description or template['pool_play'],
            bracket_play_description=bracket_play_description or template['bracket_play'],
            rules_description=rules_description,
            prize_info=prize_info,
            created_by=created_by
        )
        db.session.add(tournament)
        db.session.flush()

        db.session.add(TournamentRole(tournament_id=tournament.id, user_id=created_by, role=ORGANIZER))
        db.session.commit()

        logger.info(f"Tournament {tournament.id} ({tournament.slug}) created by {created_by}")
        self._broadcast(Event(
            type=EventType.TOURNAMENT_CREATED,
            tournament_id=tournament.id,
            data={'slug': tournament.slug, 'name': tournament.name}
        ))
        return tournament

    def _slug_taken(self, slug: str) -> bool:
        return self.get_by_slug(slug) is not None

    def get_tournament(self, tournament_id: int) -> Optional[Tournament]:
        return db.session.get(Tournament, tournament_id)

    def get_by_slug(self, slug: str) -> Optional[Tournament]:
        return Tournament.query.filter_by(slug=slug).first()

    def list_tournaments(
        self,
        status: str = None,
        public: bool = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Tournament]:
        """List tournaments, soonest first."""
        query = Tournament.query

        if status:
            query = query.filter_by(status=status)
        if public is not None:
            query = query.filter_by(is_public=public)

        query = query.order_by(Tournament.date.asc(), Tournament.id.asc())
        return query.offset(offset).limit(limit).all()

    def update_tournament(self, tournament_id: int, changes: dict) -> Tuple[bool, str]:
        """Apply parsed field changes; a status change goes through the state machine."""
        tournament = self.get_tournament(tournament_id)
        if not tournament:
            return False, "Tournament not found"

        changes = dict(changes)
        status = changes.pop('status', None)
        if status == tournament.status:
            status = None

        if status:
            # A rejected status change must leave the other fields untouched
            error = self._transition_error(tournament, status)
            if error:
                return False, error

        if changes:
            sm = TournamentStateMachine.from_state_string(tournament.status)
            if not sm.can_perform('edit'):
                return False, f"Cannot edit tournament in {tournament.status} state"

            slug = changes.get('slug')
            if slug and slug != tournament.slug and self._slug_taken(slug):
                return False, "This URL slug is already taken. Please choose a different one."

            if 'max_pods' in changes and changes['max_pods'] < len(tournament.pods):
                return False, f"Tournament already has {len(tournament.pods)} pods registered"

            try:
                check_scoring_rules({
                    column: changes.get(column, getattr(tournament, column))
                    for column in ('start_points', 'end_points', 'cap')
                })
            except ValueError as e:
                return False, str(e)

            for column, value in changes.items():
                setattr(tournament, column, value)
            db.session.commit()

        if status:
            return self.set_status(tournament_id, status)

        return True, "Tournament updated successfully!"

    def _transition_error(self, tournament: Tournament, status: str) -> Optional[str]:
        sm = TournamentStateMachine.from_state_string(tournament.status)
        try:
            sm.transition_to(status, guard_context={'pods': len(tournament.pods)})
        except TransitionError as e:
            if e.reason.startswith('Guard condition failed'):
                return "Need at least 2 pods to start"
            return e.reason
        return None

    def set_status(self, tournament_id: int, status: str) -> Tuple[bool, str]:
        """Move the tournament one lifecycle step.

        Starting requires two pods and lays out the pool schedule when none
        exists yet.
        """
        tournament = self.get_tournament(tournament_id)
        if not tournament:
            return False, "Tournament not found"

        old_state = tournament.status
        if status == old_state:
            return True, f"Tournament already {old_state}"

        error = self._transition_error(tournament, status)
        if error:
            return False, error
        new_state = TournamentState(status)

        tournament.status = new_state.value
        db.session.commit()

        if new_state == TournamentState.ACTIVE:
            engine = MatchEngine(tournament.id, live=self.live)
            if not engine.get_pool_matches():
                engine.create_pool_schedule()

        logger.info(f"Tournament {tournament_id} moved {old_state} -> {new_state.value}")
        self._broadcast(state_changed_event(tournament_id, old_state, new_state.value))
        return True, f"Tournament is now {new_state.value}"

    def delete_tournament(self, tournament_id: int) -> Tuple[bool, str]:
        """Delete a tournament (only allowed before it starts)."""
        tournament = self.get_tournament(tournament_id)
        if not tournament:
            return False, "Tournament not found"

        sm = TournamentStateMachine.from_state_string(tournament.status)
        if not sm.can_perform('delete'):
            return False, f"Cannot delete tournament in {tournament.status} state"

        db.session.delete(tournament)
        db.session.commit()

        logger.info(f"Tournament {tournament_id} deleted")
        return True, "Tournament deleted successfully!"

    # ==================== Roles ====================

    def get_user_role(self, tournament_id: int, user_id: str) -> Optional[str]:
        """Organizer wins when a user holds both roles."""
        if not user_id:
            return None
        roles = {
            r.role for r in
            TournamentRole.query.filter_by(tournament_id=tournament_id, user_id=user_id).all()
        }
        if ORGANIZER in roles:
            return ORGANIZER
        if PARTICIPANT in roles:
            return PARTICIPANT
        return None

    def is_organizer(self, tournament_id: int, user_id: str) -> bool:
        return self.get_user_role(tournament_id, user_id) == ORGANIZER

    def grant_role(self, tournament_id: int, user_id: str, role: str) -> TournamentRole:
        existing = TournamentRole.query.filter_by(
            tournament_id=tournament_id, user_id=user_id, role=role
        ).first()
        if existing:
            return existing

        grant = TournamentRole(tournament_id=tournament_id, user_id=user_id, role=role)
        db.session.add(grant)
        db.session.commit()
        return grant

    def get_user_tournaments(self, user_id: str) -> List[Tuple[Tournament, str]]:
        """Tournaments where the user holds any role, with their effective role."""
        grants = TournamentRole.query.filter_by(user_id=user_id).all()
        by_tournament = {}
        for grant in grants:
            current = by_tournament.get(grant.tournament_id)
            if current != ORGANIZER:
                by_tournament[grant.tournament_id] = grant.role

        tournaments = Tournament.query.filter(Tournament.id.in_(by_tournament.keys())) \
            .order_by(Tournament.date.asc()).all() if by_tournament else []
        return [(t, by_tournament[t.id]) for t in tournaments]

    def get_organizer_tournaments(self, user_id: str) -> List[Tournament]:
        return [t for t, role in self.get_user_tournaments(user_id) if role == ORGANIZER]

    # ==================== Whitelist ====================

    def is_whitelisted_organizer(self, user_id: str) -> bool:
        if not user_id:
            return False
        return OrganizerWhitelist.query.filter_by(user_id=user_id).first() is not None

    def add_to_whitelist(self, user_id: str, email: str, added_by: str, notes: str = None) -> Tuple[bool, str]:
        if self.is_whitelisted_organizer(user_id):
            return False, f"User {user_id} is already whitelisted"

        db.session.add(OrganizerWhitelist(user_id=user_id, email=email, added_by=added_by, notes=notes))
        db.session.commit()
        logger.info(f"User {user_id} ({email}) whitelisted as organizer by {added_by}")
        return True, f"User {user_id} whitelisted"

    def remove_from_whitelist(self, user_id: str) -> Tuple[bool, str]:
        entry = OrganizerWhitelist.query.filter_by(user_id=user_id).first()
        if not entry:
            return False, f"User {user_id} is not whitelisted"

        db.session.delete(entry)
        db.session.commit()
        return True, f"User {user_id} removed from whitelist"

    # ==================== Registration ====================

    def get_pod_count(self, tournament_id: int) -> int:
        return Pod.query.filter_by(tournament_id=tournament_id).count()

    def check_registration_open(self, tournament: Tournament, now: datetime = None) -> Tuple[bool, str]:
        now = now or datetime.utcnow()

        if tournament.status != TournamentState.UPCOMING.value:
            return False, "Registration is closed. The tournament has already started."
        if tournament.registration_open_date and now < tournament.registration_open_date:
            return False, "Registration is not open yet."
        if tournament.registration_deadline and now > tournament.registration_deadline:
            return False, "Registration deadline has passed."
        if self.get_pod_count(tournament.id) >= tournament.max_pods:
            return False, f"Registration is closed. All {tournament.max_pods} spots have been filled."
        return True, "Registration is open"

    def registration_status(self, tournament: Tournament) -> dict:
        is_open, message = self.check_registration_open(tournament)
        return {
            'isOpen': is_open,
            'podCount': self.get_pod_count(tournament.id),
            'maxPods': tournament.max_pods,
            'message': message
        }

    def register_pod(
        self,
        tournament: Tournament,
        user_id: str,
        email: str,
        player1: str,
        player2: str,
        team_name: str = None
    ) -> Tuple[bool, str, Optional[Pod]]:
        """Register one pod for ``user_id``; grants the participant role."""
        is_open, message = self.check_registration_open(tournament)
        if not is_open:
            return False, message, None

        if Pod.query.filter_by(tournament_id=tournament.id, user_id=user_id).first():
            return False, "You have already registered a pod for this tournament.", None

        if Pod.query.filter_by(tournament_id=tournament.id, email=email).first():
            return False, "This email is already registered. Each pod must use a unique email address.", None

        pod = Pod(
            tournament_id=tournament.id,
            user_id=user_id,
            email=email,
            name=f"{player1} & {player2}",
            player1=player1,
            player2=player2,
            team_name=team_name or None
        )
        db.session.add(pod)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            return False, "You have already registered a pod for this tournament.", None

        if not TournamentRole.query.filter_by(
            tournament_id=tournament.id, user_id=user_id, role=PARTICIPANT
        ).first():
            db.session.add(TournamentRole(tournament_id=tournament.id, user_id=user_id, role=PARTICIPANT))
        db.session.commit()

        logger.info(f"Pod {pod.id} registered for tournament {tournament.id} by {user_id}")
        self._broadcast(Event(
            type=EventType.POD_REGISTERED,
            tournament_id=tournament.id,
            data={'pod': pod.to_dict()}
        ))
        return True, "Registration successful!", pod
