from enum import Enum
from dataclasses import dataclass
from datetime import datetime, timezone
import json


class EventType(str, Enum):
    # Tournament lifecycle
    TOURNAMENT_CREATED = "tournament.created"
    STATE_CHANGED = "state.changed"

    # Registration
    POD_REGISTERED = "pod.registered"

    # Match events
    MATCH_STARTED = "match.started"
    SCORE_UPDATED = "match.score"
    MATCH_COMPLETED = "match.completed"

    # Bracket events
    BRACKET_INITIALIZED = "bracket.initialized"
    BRACKET_RESET = "bracket.reset"
    BRACKET_ADVANCED = "bracket.advanced"


@dataclass
class Event:
    type: EventType
    tournament_id: int
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        if self.data is None:
            self.data = {}

    def to_dict(self) -> dict:
        return {
            "type": self.type.value if isinstance(self.type, EventType) else self.type,
            "tournament_id": self.tournament_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        return cls(
            type=EventType(data["type"]) if data["type"] in [e.value for e in EventType] else data["type"],
            tournament_id=data["tournament_id"],
            timestamp=data.get("timestamp"),
            data=data.get("data", {})
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        return cls.from_dict(json.loads(json_str))


def state_changed_event(tournament_id: int, from_state: str, to_state: str) -> Event:
    return Event(
        type=EventType.STATE_CHANGED,
        tournament_id=tournament_id,
        data={
            "from_state": from_state,
            "to_state": to_state
        }
    )


def match_started_event(tournament_id: int, match: dict) -> Event:
    return Event(type=EventType.MATCH_STARTED, tournament_id=tournament_id, data={"match": match})


def score_updated_event(tournament_id: int, match_id: int, score_a: int, score_b: int) -> Event:
    return Event(
        type=EventType.SCORE_UPDATED,
        tournament_id=tournament_id,
        data={
            "match_id": match_id,
            "team_a_score": score_a,
            "team_b_score": score_b
        }
    )


def match_completed_event(tournament_id: int, match_id: int, stage: str,
                          winner_pod_id: int = None, loser_pod_id: int = None) -> Event:
    return Event(
        type=EventType.MATCH_COMPLETED,
        tournament_id=tournament_id,
        data={
            "match_id": match_id,
            "stage": stage,
            "winner_pod_id": winner_pod_id,
            "loser_pod_id": loser_pod_id
        }
    )


def bracket_event(event_type: EventType, tournament_id: int, matches_count: int) -> Event:
    return Event(type=event_type, tournament_id=tournament_id, data={"matches_count": matches_count})
