from enum import Enum
from typing import Optional, Callable, List
from dataclasses import dataclass


class TournamentState(str, Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"


class MatchState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TransitionError(Exception):
    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or f"Cannot transition from {from_state} to {to_state}"
        super().__init__(self.reason)


@dataclass
class Transition:
    from_state: Enum
    to_state: Enum
    action: str
    guard: Optional[Callable] = None


def min_pods_guard(min_count: int = 2):
    def guard(context: dict) -> bool:
        return context.get("pods", 0) >= min_count
    return guard


class TournamentStateMachine:
    TRANSITIONS = [
        Transition(TournamentState.UPCOMING, TournamentState.UPCOMING, "edit"),
        Transition(TournamentState.UPCOMING, TournamentState.ACTIVE, "start", min_pods_guard(2)),
        Transition(TournamentState.ACTIVE, TournamentState.ACTIVE, "edit"),
        Transition(TournamentState.ACTIVE, TournamentState.COMPLETED, "complete"),
    ]

    ALLOWED_ACTIONS = {
        TournamentState.UPCOMING: ["edit", "register_pod", "start", "delete"],
        TournamentState.ACTIVE: [
            "edit", "start_match", "record_score", "complete_match",
            "initialize_bracket", "complete",
        ],
        TournamentState.COMPLETED: ["view"],
    }

    FORM_ACCESS = {
        TournamentState.UPCOMING: "signup",
        TournamentState.ACTIVE: "results",
        TournamentState.COMPLETED: "readonly",
    }

    # Maps a requested target status to the action that reaches it
    STATUS_ACTIONS = {
        TournamentState.ACTIVE: "start",
        TournamentState.COMPLETED: "complete",
    }

    def __init__(self, initial_state: TournamentState = TournamentState.UPCOMING):
        self._state = initial_state
        self._history: List[tuple] = []

    @property
    def state(self) -> TournamentState:
        return self._state

    @property
    def form_access(self) -> str:
        return self.FORM_ACCESS.get(self._state, "readonly")

    @property
    def allowed_actions(self) -> List[str]:
        return self.ALLOWED_ACTIONS.get(self._state, [])

    def can_transition(self, action: str) -> bool:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                return True
        return False

    def can_perform(self, action: str) -> bool:
        return action in self.allowed_actions

    def transition(self, action: str, guard_context: dict = None) -> TournamentState:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                if t.guard and guard_context:
                    if not t.guard(guard_context):
                        raise TransitionError(
                            self._state.value,
                            t.to_state.value,
                            f"Guard condition failed for action '{action}'"
                        )

                old_state = self._state
                self._state = t.to_state
                self._history.append((old_state, action, self._state))
                return self._state

        raise TransitionError(
            self._state.value,
            "unknown",
            f"No valid transition for action '{action}' from state '{self._state.value}'"
        )

    def transition_to(self, status: str, guard_context: dict = None) -> TournamentState:
        """Move to ``status`` through the single action that reaches it."""
        try:
            target = TournamentState(status)
        except ValueError:
            raise TransitionError(self._state.value, status, f"Unknown tournament status '{status}'")

        if target == self._state:
            return self._state

        action = self.STATUS_ACTIONS.get(target)
        if action is None or not self.can_transition(action):
            raise TransitionError(self._state.value, target.value)
        return self.transition(action, guard_context)

    def get_history(self) -> List[tuple]:
        return self._history.copy()

    @classmethod
    def from_state_string(cls, state_str: str) -> "TournamentStateMachine":
        try:
            state = TournamentState(state_str)
        except ValueError:
            state = TournamentState.UPCOMING
        return cls(initial_state=state)


def valid_final_score_guard(winning_score: int = 21, win_by: int = 2, score_cap: Optional[int] = 25):
    """Build a guard accepting only a decided final score.

    The leader must reach ``winning_score`` with a ``win_by`` margin, or reach
    ``score_cap`` (no cap when ``None``). A tied score is never final.
    """
    def guard(context: dict) -> bool:
        score_a = context.get("score_a", 0)
        score_b = context.get("score_b", 0)
        if score_a == score_b:
            return False
        top = max(score_a, score_b)
        margin = abs(score_a - score_b)
        if top >= winning_score and margin >= win_by:
            return True
        return score_cap is not None and top >= score_cap
    return guard


def no_live_match_guard(context: dict) -> bool:
    return context.get("live_matches", 0) == 0


class MatchStateMachine:
    """Match lifecycle: pending -> in_progress -> completed, no skipping."""

    def __init__(self, initial_state: MatchState = MatchState.PENDING, score_guard: Callable = None):
        self._state = initial_state
        self.transitions = [
            Transition(MatchState.PENDING, MatchState.IN_PROGRESS, "start", no_live_match_guard),
            Transition(MatchState.IN_PROGRESS, MatchState.IN_PROGRESS, "score"),
            Transition(MatchState.IN_PROGRESS, MatchState.COMPLETED, "complete",
                       score_guard or valid_final_score_guard()),
        ]

    @property
    def state(self) -> MatchState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state == MatchState.COMPLETED

    def can_transition(self, action: str) -> bool:
        return any(t.from_state == self._state and t.action == action for t in self.transitions)

    def transition(self, action: str, guard_context: dict = None) -> MatchState:
        for t in self.transitions:
            if t.from_state == self._state and t.action == action:
                if t.guard and guard_context is not None and not t.guard(guard_context):
                    raise TransitionError(
                        self._state.value,
                        t.to_state.value,
                        f"Guard condition failed for action '{action}'"
                    )
                self._state = t.to_state
                return self._state

        raise TransitionError(
            self._state.value,
            "unknown",
            f"No valid transition for action '{action}' from match state '{self._state.value}'"
        )

    @classmethod
    def from_state_string(cls, state_str: str, score_guard: Callable = None) -> "MatchStateMachine":
        try:
            state = MatchState(state_str)
        except ValueError:
            state = MatchState.PENDING
        return cls(state, score_guard=score_guard)
