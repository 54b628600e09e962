"""
Single elimination bracket seeding.

Seeds come straight from the pool standings: seed k meets seed size + 1 - k in
round one, pairings are laid out in standard bracket order so the top two
seeds can only meet in the final, and byes go to the top seeds.
"""
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from shared.state_machine import TournamentState


class BracketUnavailableError(Exception):
    """Raised when a bracket is requested before the tournament has started."""

    def __init__(self, message: str = "Bracket not yet available"):
        super().__init__(message)


def get_round_name(teams_in_round: int) -> str:
    if teams_in_round == 2:
        return "Final"
    elif teams_in_round == 4:
        return "Semifinal"
    elif teams_in_round == 8:
        return "Quarterfinal"
    return f"Round of {teams_in_round}"


def calculate_bracket_size(num_pods: int) -> int:
    """Smallest power of two that holds ``num_pods``."""
    if num_pods <= 1:
        return num_pods
    return 2 ** math.ceil(math.log2(num_pods))


def is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


def _generate_bracket_order(bracket_size: int) -> List[int]:
    """
    Standard bracket order of seeds.

    For 8 pods: [1, 8, 4, 5, 2, 7, 3, 6]
    This gives matchups 1v8, 4v5, 2v7, 3v6 so that 1 and 2 can only meet
    in the final.
    """
    if bracket_size == 2:
        return [1, 2]

    upper_half = _generate_bracket_order(bracket_size // 2)
    lower_half = [bracket_size + 1 - seed for seed in upper_half]

    result = []
    for u, l in zip(upper_half, lower_half):
        result.extend([u, l])
    return result


def feeder_positions(position: int) -> Tuple[int, int]:
    """Positions in the previous round whose winners meet at ``position``."""
    return 2 * position, 2 * position + 1


def next_slot(position: int) -> Tuple[int, str]:
    """Where the winner at ``position`` goes in the following round."""
    return position // 2, 'a' if position % 2 == 0 else 'b'


@dataclass
class BracketNode:
    round: int
    position: int
    pod_a_id: Optional[int] = None
    pod_b_id: Optional[int] = None
    seed_a: Optional[int] = None
    seed_b: Optional[int] = None
    # (round, position) of the matches whose winners fill each slot
    feeder_a: Optional[Tuple[int, int]] = None
    feeder_b: Optional[Tuple[int, int]] = None
    is_bye: bool = False
    status: str = 'pending'
    winner_pod_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            'round': self.round,
            'position': self.position,
            'team_a_pod': self.pod_a_id,
            'team_b_pod': self.pod_b_id,
            'seed_a': self.seed_a,
            'seed_b': self.seed_b,
            'feeder_a': list(self.feeder_a) if self.feeder_a else None,
            'feeder_b': list(self.feeder_b) if self.feeder_b else None,
            'is_bye': self.is_bye,
            'status': self.status,
            'winner_pod': self.winner_pod_id,
        }


@dataclass
class Bracket:
    size: int
    seeds: List[int]
    rounds: List[List[BracketNode]] = field(default_factory=list)

    @property
    def first_round(self) -> List[BracketNode]:
        return self.rounds[0] if self.rounds else []

    @property
    def byes(self) -> List[BracketNode]:
        return [node for node in self.first_round if node.is_bye]

    def node(self, round_number: int, position: int) -> BracketNode:
        return self.rounds[round_number - 1][position]

    def playable_nodes(self) -> List[BracketNode]:
        return [node for rnd in self.rounds for node in rnd if not node.is_bye]

    def to_dict(self) -> dict:
        return {
            'size': self.size,
            'seeds': self.seeds,
            'rounds': [
                {
                    'round': i + 1,
                    'name': get_round_name(self.size // (2 ** i)),
                    'matches': [node.to_dict() for node in rnd],
                }
                for i, rnd in enumerate(self.rounds)
            ],
        }


def seed_bracket(
    standings: Sequence,
    tournament_status: str,
    bracket_size: int = None,
    qualifying: int = None
) -> Bracket:
    """Build the bracket skeleton from ranked standings.

    ``standings`` is the ranked sequence produced by ``compute_standings``
    (anything with a ``pod_id``); the first ``qualifying`` rows take seeds
    1..n. Later rounds name pods only once their feeder is decided, which
    for now means a round-one bye.
    """
    if tournament_status == TournamentState.UPCOMING.value:
        raise BracketUnavailableError()

    qualified = list(standings)
    if qualifying is not None:
        if qualifying < 2:
            raise ValueError("At least 2 pods must qualify for the bracket")
        qualified = qualified[:qualifying]

    n = len(qualified)
    if n < 2:
        raise ValueError("At least 2 pods are required to seed a bracket")

    if bracket_size is None:
        bracket_size = calculate_bracket_size(n)
    elif not is_power_of_two(bracket_size) or bracket_size < n:
        raise ValueError(f"Bracket size {bracket_size} must be a power of two of at least {n}")
    elif bracket_size >= 2 * n:
        raise ValueError(f"Bracket size {bracket_size} leaves empty first-round pairings for {n} pods")

    seed_to_pod = {i + 1: row.pod_id for i, row in enumerate(qualified)}
    bracket = Bracket(size=bracket_size, seeds=[row.pod_id for row in qualified])

    order = _generate_bracket_order(bracket_size)
    first_round = []
    for position in range(bracket_size // 2):
        seed_a, seed_b = order[2 * position], order[2 * position + 1]
        node = BracketNode(
            round=1,
            position=position,
            pod_a_id=seed_to_pod.get(seed_a),
            pod_b_id=seed_to_pod.get(seed_b),
            seed_a=seed_a,
            seed_b=seed_b,
        )
        if node.pod_b_id is None:
            # Higher seed advances without playing
            node.is_bye = True
            node.status = 'completed'
            node.winner_pod_id = node.pod_a_id
        first_round.append(node)
    bracket.rounds.append(first_round)

    previous = first_round
    round_number = 2
    while len(previous) > 1:
        current = []
        for position in range(len(previous) // 2):
            left, right = feeder_positions(position)
            current.append(BracketNode(
                round=round_number,
                position=position,
                pod_a_id=previous[left].winner_pod_id if previous[left].is_bye else None,
                pod_b_id=previous[right].winner_pod_id if previous[right].is_bye else None,
                feeder_a=(round_number - 1, left),
                feeder_b=(round_number - 1, right),
            ))
        bracket.rounds.append(current)
        previous = current
        round_number += 1

    return bracket
