"""
Badge Definitions
=================

Badges are one-way achievements gated by a predicate over a ledger snapshot.

Contract:
- BADGE_DEFINITIONS is evaluated in declaration order. The order does not
  change which badges are earned (every predicate is monotonic in the field
  it reads) but it fixes the order in which newly earned badges are reported.
- A badge already held is never re-reported and never removed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, List, Sequence, Tuple


@dataclass(frozen=True)
class BadgeSnapshot:
    total_points: int
    streak_days: int
    badges: Tuple[str, ...] = ()


@dataclass(frozen=True)
class BadgeDefinition:
    badge_id: str
    name: str
    guard: Callable[[BadgeSnapshot], bool]


def _points_at_least(threshold: int) -> Callable[[BadgeSnapshot], bool]:
    return lambda s: s.total_points >= threshold


def _streak_at_least(days: int) -> Callable[[BadgeSnapshot], bool]:
    return lambda s: s.streak_days >= days


BADGE_DEFINITIONS: Tuple[BadgeDefinition, ...] = (
    BadgeDefinition("points_100", "First 100 points", _points_at_least(100)),
    BadgeDefinition("points_500", "500 points", _points_at_least(500)),
    BadgeDefinition("points_1000", "1,000 points", _points_at_least(1000)),
    BadgeDefinition("points_5000", "5,000 points", _points_at_least(5000)),
    BadgeDefinition("streak_3", "3-day streak", _streak_at_least(3)),
    BadgeDefinition("streak_7", "7-day streak", _streak_at_least(7)),
    BadgeDefinition("streak_30", "30-day streak", _streak_at_least(30)),
)


def qualifying_badges(
    snapshot: BadgeSnapshot,
    definitions: Sequence[BadgeDefinition] = BADGE_DEFINITIONS,
) -> List[str]:
    """All badge ids whose predicate holds for the snapshot, in declaration order."""
    return [d.badge_id for d in definitions if d.guard(snapshot)]


def newly_earned_badges(
    snapshot: BadgeSnapshot,
    definitions: Sequence[BadgeDefinition] = BADGE_DEFINITIONS,
) -> List[str]:
    held = set(snapshot.badges)
    return [badge_id for badge_id in qualifying_badges(snapshot, definitions) if badge_id not in held]


def merge_badges(existing: Iterable[str], earned: Iterable[str]) -> Tuple[str, ...]:
    out = list(existing)
    for badge_id in earned:
        if badge_id not in out:
            out.append(badge_id)
    return tuple(out)
