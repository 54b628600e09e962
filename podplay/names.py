import re
from datetime import date as date_type
from typing import Callable, Dict, Iterable

MONTH_NAMES = [
    'jan', 'feb', 'mar', 'apr', 'may', 'jun',
    'jul', 'aug', 'sep', 'oct', 'nov', 'dec'
]

MAX_SLUG_ATTEMPTS = 100

SLUG_PATTERN = re.compile(r'^[a-z0-9-]+$')

_COMBINED_SEPARATOR = re.compile(r'\s*&\s*|\s+and\s+', re.IGNORECASE)


def generate_slug(name: str, when: date_type) -> str:
    """Build a slug like 'two-peas-in-a-pod-dec-2025' (not guaranteed unique)."""
    base = name.lower()
    base = re.sub(r'[^a-z0-9\s-]', '', base)
    base = re.sub(r'\s+', '-', base)
    base = re.sub(r'-+', '-', base)
    base = base.strip('-')
    return f"{base}-{MONTH_NAMES[when.month - 1]}-{when.year}"


def ensure_unique_slug(base_slug: str, exists: Callable[[str], bool]) -> str:
    """Append -2, -3, ... to ``base_slug`` until ``exists`` reports it free."""
    slug = base_slug
    counter = 2
    while exists(slug):
        if counter > MAX_SLUG_ATTEMPTS:
            raise ValueError(f"Could not generate unique slug after {MAX_SLUG_ATTEMPTS} attempts")
        slug = f"{base_slug}-{counter}"
        counter += 1
    return slug


def is_valid_slug(slug: str) -> bool:
    return bool(slug) and bool(SLUG_PATTERN.match(slug))


def first_names(full_name: str) -> str:
    """'Mary Jane Watson' -> 'Mary'"""
    if not full_name:
        return ''
    parts = full_name.split()
    return parts[0] if parts else ''


def combined_first_names(combined: str) -> str:
    """'John Smith & Mary Jones' -> 'John & Mary'"""
    if not combined:
        return ''
    parts = _COMBINED_SEPARATOR.split(combined.strip())
    return ' & '.join(first_names(p) for p in parts if p.strip())


def pod_numbers(pod_ids: Iterable[int]) -> Dict[int, int]:
    """Number pods 1..N in ascending id order."""
    return {pod_id: i + 1 for i, pod_id in enumerate(sorted(pod_ids))}
