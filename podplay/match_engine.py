import logging
from datetime import datetime
from typing import List, Dict, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from .models import db, Match, Pod, Tournament
from .names import pod_numbers
from .standings import compute_standings, StandingsRow
from .bracket_seeder import seed_bracket, next_slot, get_round_name, BracketUnavailableError
from shared.state_machine import (
    TournamentStateMachine, TournamentState, MatchStateMachine, MatchState,
    TransitionError, valid_final_score_guard
)
from shared.events import (
    EventType, match_started_event, score_updated_event, match_completed_event, bracket_event
)

logger = logging.getLogger(__name__)

POOL = 'pool'
BRACKET = 'bracket'


class MatchError(Exception):
    """A scorekeeping request that cannot be carried out."""
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(MatchError):
    status_code = 404


class ConflictError(MatchError):
    status_code = 409


class MatchEngine:
    """Pool schedule, live scorekeeping and bracket progression for one tournament.

    At most one match of a tournament is ``in_progress`` at a time. The
    engine checks this before every start and the partial unique index on
    ``matches`` rejects any write that slips past it.
    """

    def __init__(self, tournament_id: int, live=None):
        self.t_record = db.session.get(Tournament, tournament_id)
        if not self.t_record:
            raise NotFoundError("Tournament not found")
        self.tournament_id = self.t_record.id
        self.live = live

    @property
    def state_machine(self) -> TournamentStateMachine:
        return TournamentStateMachine.from_state_string(self.t_record.status)

    def scoring_rules(self) -> Dict:
        """The tournament's own scoring rules, with empty ones taken from config.

        Once a tournament sets ``end_points`` or ``cap`` its cap is its own, so
        an empty cap there means games are uncapped.
        """
        config = current_app.config
        t = self.t_record
        if t.end_points is None and t.cap is None:
            cap = config.get('SCORE_CAP', 25)
        else:
            cap = t.cap

        if t.win_by_two is None:
            win_by = config.get('WIN_BY', 2)
        else:
            win_by = 2 if t.win_by_two else 1

        return {
            'start_points': t.start_points or 0,
            'end_points': t.end_points or config.get('WINNING_SCORE', 21),
            'win_by': win_by,
            'cap': cap,
        }

    def _score_guard(self):
        rules = self.scoring_rules()
        return valid_final_score_guard(
            winning_score=rules['end_points'],
            win_by=rules['win_by'],
            score_cap=rules['cap']
        )

    def _broadcast(self, event):
        if self.live:
            self.live.broadcast(event)

    def _require_action(self, action: str, label: str):
        if not self.state_machine.can_perform(action):
            raise MatchError(f"Cannot {label} while tournament is {self.t_record.status}")

    def _commit(self):
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("Another game is already in progress")
        except StaleDataError:
            db.session.rollback()
            raise ConflictError("Game was updated by someone else. Reload and try again.")

    # ==================== Pods ====================

    def get_pods(self) -> List[Pod]:
        return Pod.query.filter_by(tournament_id=self.tournament_id).order_by(Pod.id).all()

    def get_pod_count(self) -> int:
        return Pod.query.filter_by(tournament_id=self.tournament_id).count()

    def get_pods_view(self) -> List[Dict]:
        pods = self.get_pods()
        numbers = pod_numbers(p.id for p in pods)
        return [p.to_dict(number=numbers[p.id]) for p in pods]

    # ==================== Pool play ====================

    def create_pool_schedule(self) -> List[Match]:
        """Round robin over all pods using the circle method."""
        pod_ids = [p.id for p in self.get_pods()]
        n = len(pod_ids)

        if n < 2:
            return []

        if n % 2 == 1:
            pod_ids.append(None)
            n += 1

        courts = max(1, current_app.config.get('POOL_COURTS', 1))
        created = []

        for round_idx in range(n - 1):
            for i in range(n // 2):
                a = pod_ids[i]
                b = pod_ids[n - 1 - i]

                if a is not None and b is not None:
                    match = Match(
                        tournament_id=self.tournament_id,
                        stage=POOL,
                        game_number=len(created) + 1,
                        round_number=round_idx + 1,
                        court_number=(len(created) % courts) + 1,
                        pod_a_id=a,
                        pod_b_id=b,
                        status=MatchState.PENDING.value
                    )
                    db.session.add(match)
                    created.append(match)

            pod_ids = [pod_ids[0]] + [pod_ids[-1]] + pod_ids[1:-1]

        db.session.commit()
        logger.info(f"Created {len(created)} pool games for tournament {self.tournament_id}")
        return created

    def get_pool_matches(self) -> List[Match]:
        return Match.query.filter_by(tournament_id=self.tournament_id, stage=POOL) \
            .order_by(Match.game_number).all()

    def get_match(self, match_id: int) -> Match:
        match = db.session.get(Match, match_id)
        if not match or match.tournament_id != self.tournament_id:
            raise NotFoundError("Game not found")
        return match

    def get_current_match(self) -> Optional[Match]:
        """The single in-progress match, in either stage."""
        return Match.query.filter_by(
            tournament_id=self.tournament_id,
            status=MatchState.IN_PROGRESS.value
        ).first()

    def live_match_count(self) -> int:
        return Match.query.filter_by(
            tournament_id=self.tournament_id,
            status=MatchState.IN_PROGRESS.value
        ).count()

    def get_next_pending_match(self, stage: str = POOL) -> Optional[Match]:
        query = Match.query.filter_by(
            tournament_id=self.tournament_id,
            stage=stage,
            status=MatchState.PENDING.value
        )
        if stage == BRACKET:
            # Bracket slots fill in as earlier rounds finish
            query = query.filter(Match.pod_a_id.isnot(None), Match.pod_b_id.isnot(None))
        return query.order_by(Match.round_number, Match.game_number).first()

    def get_matches_log(self) -> List[Match]:
        """Completed pool games, most recent first."""
        return Match.query.filter_by(
            tournament_id=self.tournament_id,
            stage=POOL,
            status=MatchState.COMPLETED.value
        ).order_by(Match.completed_at.desc(), Match.id.desc()).all()

    def pool_play_complete(self) -> bool:
        matches = self.get_pool_matches()
        return len(matches) > 0 and all(m.status == MatchState.COMPLETED.value for m in matches)

    def get_standings(self) -> List[StandingsRow]:
        return compute_standings(self.get_matches_log(), self.get_pods())

    # ==================== Scorekeeping ====================

    def start_next_match(self, stage: str = POOL) -> Match:
        """Put the next pending game of ``stage`` on court."""
        self._require_action('start_match', 'start games')

        live = self.live_match_count()
        if live:
            raise ConflictError("A game is already in progress. Complete it before starting another.")

        match = self.get_next_pending_match(stage)
        if not match:
            raise NotFoundError("No pending games available")

        sm = MatchStateMachine.from_state_string(match.status)
        try:
            sm.transition('start', {'live_matches': live})
        except TransitionError as e:
            raise MatchError(e.reason)

        match.status = sm.state.value
        start_points = self.scoring_rules()['start_points']
        match.pod_a_score = start_points
        match.pod_b_score = start_points
        match.started_at = datetime.utcnow()
        self._commit()

        logger.info(f"Game {match.id} ({stage} #{match.game_number}) started in tournament {self.tournament_id}")
        self._broadcast(match_started_event(self.tournament_id, match.to_dict()))
        return match

    def update_score(self, match_id: int, score_a, score_b, expected_version: int = None) -> Match:
        """Record the running score of the live game."""
        self._require_action('record_score', 'record scores')

        for value in (score_a, score_b):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise MatchError("Scores must be non-negative whole numbers")

        match = self.get_match(match_id)

        sm = MatchStateMachine.from_state_string(match.status)
        if not sm.can_transition('score'):
            raise MatchError("Game is not in progress")

        if expected_version is not None:
            if isinstance(expected_version, bool):
                raise MatchError("version must be an integer")
            try:
                expected_version = int(expected_version)
            except (TypeError, ValueError):
                raise MatchError("version must be an integer")
            if expected_version != match.version:
                raise ConflictError("Game was updated by someone else. Reload and try again.")

        sm.transition('score')
        match.pod_a_score = score_a
        match.pod_b_score = score_b
        self._commit()

        self._broadcast(score_updated_event(self.tournament_id, match.id, score_a, score_b))
        return match

    def complete_match(self, match_id: int) -> Match:
        """Finish the live game; bracket winners move on to their next slot."""
        self._require_action('complete_match', 'complete games')

        match = self.get_match(match_id)

        sm = MatchStateMachine.from_state_string(match.status, score_guard=self._score_guard())
        if not sm.can_transition('complete'):
            raise MatchError("Game is not in progress")

        try:
            sm.transition('complete', {'score_a': match.pod_a_score, 'score_b': match.pod_b_score})
        except TransitionError:
            rules = self.scoring_rules()
            capped = f"capped at {rules['cap']}" if rules['cap'] is not None else "no cap"
            raise MatchError(
                f"Invalid final score {match.pod_a_score}-{match.pod_b_score}. "
                f"Games are played to {rules['end_points']}, "
                f"win by {rules['win_by']}, {capped}."
            )

        match.status = sm.state.value
        match.completed_at = datetime.utcnow()

        advanced = match.stage == BRACKET and self._advance_winner(match)

        self._commit()

        logger.info(
            f"Game {match.id} completed {match.pod_a_score}-{match.pod_b_score} "
            f"in tournament {self.tournament_id}"
        )
        self._broadcast(match_completed_event(
            self.tournament_id, match.id, match.stage, match.winner_pod_id, match.loser_pod_id
        ))
        if advanced:
            self._broadcast(bracket_event(EventType.BRACKET_ADVANCED, self.tournament_id, 1))
        return match

    # ==================== Bracket ====================

    def get_bracket_matches(self) -> List[Match]:
        return Match.query.filter_by(tournament_id=self.tournament_id, stage=BRACKET) \
            .order_by(Match.round_number, Match.bracket_position).all()

    def initialize_bracket(self) -> List[Match]:
        """Seed the bracket from pool standings; returns the existing one if present."""
        if self.t_record.status == TournamentState.UPCOMING.value:
            raise BracketUnavailableError()

        existing = self.get_bracket_matches()
        if existing:
            return existing

        self._require_action('initialize_bracket', 'create the bracket')

        if not self.pool_play_complete():
            raise MatchError("Pool play is not complete")

        try:
            bracket = seed_bracket(
                self.get_standings(),
                self.t_record.status,
                qualifying=self.t_record.bracket_pods
            )
        except ValueError as e:
            raise MatchError(str(e))

        created = []
        for node in bracket.playable_nodes():
            match = Match(
                tournament_id=self.tournament_id,
                stage=BRACKET,
                game_number=len(created) + 1,
                round_number=node.round,
                bracket_position=node.position,
                pod_a_id=node.pod_a_id,
                pod_b_id=node.pod_b_id,
                status=MatchState.PENDING.value
            )
            db.session.add(match)
            created.append(match)

        self._commit()

        logger.info(
            f"Bracket of {bracket.size} ({len(bracket.byes)} byes) created for tournament {self.tournament_id}"
        )
        self._broadcast(bracket_event(EventType.BRACKET_INITIALIZED, self.tournament_id, len(created)))
        return created

    def reset_bracket(self) -> List[Match]:
        """Drop the bracket and seed it again from current standings."""
        if self.t_record.status == TournamentState.UPCOMING.value:
            raise BracketUnavailableError()

        self._require_action('initialize_bracket', 'reset the bracket')

        if Match.query.filter_by(
            tournament_id=self.tournament_id, stage=BRACKET, status=MatchState.IN_PROGRESS.value
        ).count():
            raise ConflictError("Cannot reset the bracket while a bracket game is in progress")

        Match.query.filter_by(tournament_id=self.tournament_id, stage=BRACKET).delete()
        db.session.commit()

        logger.info(f"Bracket reset for tournament {self.tournament_id}")
        self._broadcast(bracket_event(EventType.BRACKET_RESET, self.tournament_id, 0))
        return self.initialize_bracket()

    def _advance_winner(self, match: Match) -> bool:
        """Place the winner in its next-round slot; the caller commits."""
        position, slot = next_slot(match.bracket_position)
        target = Match.query.filter_by(
            tournament_id=self.tournament_id,
            stage=BRACKET,
            round_number=match.round_number + 1,
            bracket_position=position
        ).first()

        if target is None:
            # The final has no next slot
            return False

        if slot == 'a':
            target.pod_a_id = match.winner_pod_id
        else:
            target.pod_b_id = match.winner_pod_id
        return True

    def get_bracket(self) -> Dict:
        """Bracket view grouped by round; empty until initialized."""
        if self.t_record.status == TournamentState.UPCOMING.value:
            raise BracketUnavailableError()

        matches = self.get_bracket_matches()
        if not matches:
            return {
                'initialized': False,
                'pool_play_complete': self.pool_play_complete(),
                'rounds': [],
                'champion': None
            }

        total_rounds = max(m.round_number for m in matches)
        size = 2 ** total_rounds
        rounds = []
        for round_number in range(1, total_rounds + 1):
            rounds.append({
                'round': round_number,
                'name': get_round_name(size // (2 ** (round_number - 1))),
                'matches': [m.to_dict() for m in matches if m.round_number == round_number]
            })

        final = [m for m in matches if m.round_number == total_rounds][0]
        return {
            'initialized': True,
            'pool_play_complete': True,
            'rounds': rounds,
            'champion': final.winner_pod_id
        }
