"""
Default pool/bracket write-ups per tournament type.

Organizers can overwrite either text; these only fill descriptions left empty
when a tournament is created.
"""
from typing import Dict, Optional

TOURNAMENT_TYPES = ('pod_2', 'pod_3', 'set_teams')
LEVELS = ('c', 'b', 'a', 'open')
DEFAULT_TYPE = 'pod_2'

TOURNAMENT_TEMPLATES: Dict[str, Dict[str, str]] = {
    'pod_2': {
        'pool_play': (
            "9 Pods of 2 Players\n"
            "18 total players divided into partnerships\n"
            "\n"
            "6v6 Matches\n"
            "3 pods per side, 3 pods rest each round\n"
            "\n"
            "Seeding by Point Differential\n"
            "Pods ranked 1-9 after pool play"
        ),
        'bracket_play': (
            "Seeded Bracket\n"
            "Top seeds earn byes when the field is not a power of two\n"
            "\n"
            "Single Elimination\n"
            "Win and advance, lose and you are out"
        ),
    },
    'pod_3': {
        'pool_play': (
            "Pods of 3 Players\n"
            "Players form partnerships for pool play\n"
            "\n"
            "6v6 Matches\n"
            "Multiple pods per side, rotating through rounds\n"
            "\n"
            "Seeding by Point Differential\n"
            "Pods ranked after pool play"
        ),
        'bracket_play': (
            "Seeded by Pool Play\n"
            "1 plays the lowest seed, 2 the next lowest\n"
            "\n"
            "Games to 25\n"
            "Win by 2\n"
            "\n"
            "Single Elimination\n"
            "Win and advance, lose and you are out"
        ),
    },
    'set_teams': {
        'pool_play': (
            "Pool Play Format\n"
            "Every team plays every other team once\n"
            "\n"
            "6v6 Matches\n"
            "Libero allowed, no typewriting\n"
            "\n"
            "Seeding System\n"
            "By record, then point differential"
        ),
        'bracket_play': (
            "Games to 25 points, win by 2\n"
            "\n"
            "Single Elimination Bracket\n"
            "Win and advance, lose and you are out"
        ),
    },
}


def get_template_for_type(tournament_type: Optional[str]) -> Dict[str, str]:
    return TOURNAMENT_TEMPLATES.get(tournament_type or DEFAULT_TYPE, TOURNAMENT_TEMPLATES[DEFAULT_TYPE])
