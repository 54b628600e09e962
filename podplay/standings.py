"""
Pool standings.

Standings are derived from completed pool matches on every read. Nothing is
cached and no state survives between calls.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class StandingsRow:
    pod_id: int
    name: str
    wins: int = 0
    losses: int = 0
    points_for: int = 0
    points_against: int = 0
    games_played: int = 0
    rank: Optional[int] = None

    @property
    def point_differential(self) -> int:
        return self.points_for - self.points_against

    def to_dict(self) -> dict:
        data = asdict(self)
        data['point_differential'] = self.point_differential
        return data


def _counts(match) -> bool:
    return (
        getattr(match, 'status', 'completed') == 'completed'
        and getattr(match, 'stage', 'pool') == 'pool'
        and match.pod_a_id is not None
        and match.pod_b_id is not None
    )


def sort_key(row: StandingsRow):
    # Pods that have played rank ahead of equal pods that have not
    return (-row.wins, -row.point_differential, row.games_played == 0, row.pod_id)


def compute_standings(matches: Iterable, pods: Iterable) -> List[StandingsRow]:
    """Rank pods by wins, then point differential, then pod id.

    ``matches`` are objects exposing ``pod_a_id``, ``pod_b_id``,
    ``pod_a_score``, ``pod_b_score`` and optionally ``status``/``stage``;
    anything that is not a completed pool match is ignored. ``pods`` expose
    ``id`` and ``display_name`` (or ``name``).

    A tied match is recorded as played for both pods but counts as neither a
    win nor a loss.
    """
    rows = {}
    for pod in pods:
        name = getattr(pod, 'display_name', None) or getattr(pod, 'name', '')
        rows[pod.id] = StandingsRow(pod_id=pod.id, name=name)

    for match in matches:
        if not _counts(match):
            continue

        row_a = rows.get(match.pod_a_id)
        row_b = rows.get(match.pod_b_id)
        if row_a is None or row_b is None:
            logger.warning(
                f"Skipping match {getattr(match, 'id', None)}: "
                f"pods {match.pod_a_id}/{match.pod_b_id} are not in this tournament"
            )
            continue

        score_a = match.pod_a_score or 0
        score_b = match.pod_b_score or 0

        row_a.points_for += score_a
        row_a.points_against += score_b
        row_a.games_played += 1
        row_b.points_for += score_b
        row_b.points_against += score_a
        row_b.games_played += 1

        if score_a > score_b:
            row_a.wins += 1
            row_b.losses += 1
        elif score_b > score_a:
            row_b.wins += 1
            row_a.losses += 1

    standings = sorted(rows.values(), key=sort_key)
    for i, row in enumerate(standings):
        row.rank = i + 1

    return standings
