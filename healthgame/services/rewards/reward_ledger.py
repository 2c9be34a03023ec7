"""
Reward Ledger (Canonical)
=========================

Purpose:
- Maintain the per-user gamification aggregate: total points, streak length,
  badge set, last completion date.
- This is the ONLY writer of the ledger row. Every other component reads it.

Award algorithm:
1) Load the row (or start an empty one; the row is created lazily).
2) new_total = old_total + points (points must be > 0).
3) Streak, by calendar day in the engine timezone:
   - no prior completion            -> 1
   - same day as last completion    -> unchanged
   - day after last completion      -> +1
   - any larger gap                 -> reset to 1
4) Badges: ordered predicates over the UPDATED snapshot; new ones are
   appended, existing ones are never removed.
5) One conditional write keyed by user_id (compare-and-set on `version`).
   A lost race re-reads and recomputes; it never overwrites blindly.

Repo contract:
- get_ledger(user_id) -> LedgerSnapshot|None
- write_ledger(snapshot, expected_version: int|None) -> bool
    expected_version None => insert only if no row exists
    otherwise             => update only if stored version == expected_version
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from healthgame.errors import InvalidInputError, LedgerConflictError
from healthgame.services.rewards.badges import (
    BADGE_DEFINITIONS,
    BadgeDefinition,
    BadgeSnapshot,
    merge_badges,
    newly_earned_badges,
)
from healthgame.utils.timeutil import Clock, local_today, parse_date, parse_datetime, to_iso, utcnow

log = logging.getLogger("healthgame.ledger")


@dataclass(frozen=True)
class LedgerSnapshot:
    user_id: str
    total_points: int = 0
    streak_days: int = 0
    badges: Tuple[str, ...] = ()
    last_completed_date: Optional[date] = None
    version: int = 0
    updated_at: Optional[datetime] = None

    def badge_snapshot(self) -> BadgeSnapshot:
        return BadgeSnapshot(
            total_points=self.total_points,
            streak_days=self.streak_days,
            badges=self.badges,
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "total_points": int(self.total_points),
            "streak_days": int(self.streak_days),
            "badges": list(self.badges),
            "last_completed_date": self.last_completed_date.isoformat() if self.last_completed_date else None,
            "version": int(self.version),
            "updated_at": to_iso(self.updated_at),
        }

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "LedgerSnapshot":
        badges = row.get("badges") or []
        return LedgerSnapshot(
            user_id=str(row.get("user_id")),
            total_points=int(row.get("total_points") or 0),
            streak_days=int(row.get("streak_days") or 0),
            badges=tuple(str(b) for b in badges),
            last_completed_date=parse_date(row.get("last_completed_date")),
            version=int(row.get("version") or 0),
            updated_at=parse_datetime(row.get("updated_at")),
        )


@dataclass(frozen=True)
class AwardResult:
    user_id: str
    points_awarded: int
    previous_total: int
    new_total: int
    streak_days: int
    newly_earned_badges: List[str] = field(default_factory=list)
    badges: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "points_awarded": self.points_awarded,
            "previous_total": self.previous_total,
            "new_total": self.new_total,
            "streak_days": self.streak_days,
            "newly_earned_badges": list(self.newly_earned_badges),
            "badges": list(self.badges),
        }


def next_streak(last_completed: Optional[date], today: date, current_streak: int) -> int:
    if last_completed is None:
        return 1
    gap = (today - last_completed).days
    if gap <= 0:
        # same day (or a clock behind the stored date): no inflation
        return max(current_streak, 1)
    if gap == 1:
        return current_streak + 1
    return 1


def apply_award(
    snapshot: LedgerSnapshot,
    points: int,
    today: date,
    now: datetime,
    definitions: Sequence[BadgeDefinition] = BADGE_DEFINITIONS,
) -> Tuple[LedgerSnapshot, List[str]]:
    """Pure award step: returns the updated snapshot and the badges it newly earns."""
    updated = replace(
        snapshot,
        total_points=snapshot.total_points + int(points),
        streak_days=next_streak(snapshot.last_completed_date, today, snapshot.streak_days),
        last_completed_date=max(today, snapshot.last_completed_date) if snapshot.last_completed_date else today,
        updated_at=now,
    )
    earned = newly_earned_badges(updated.badge_snapshot(), definitions)
    updated = replace(updated, badges=merge_badges(updated.badges, earned))
    return updated, earned


class RewardLedger:
    def __init__(
        self,
        repo: Any,
        *,
        timezone: str = "UTC",
        clock: Clock = utcnow,
        max_attempts: int = 5,
        definitions: Sequence[BadgeDefinition] = BADGE_DEFINITIONS,
    ) -> None:
        self.repo = repo
        self.timezone = timezone
        self.clock = clock
        self.max_attempts = max(1, int(max_attempts))
        self.definitions = tuple(definitions)

    async def get_snapshot(self, user_id: str) -> LedgerSnapshot:
        existing = await self.repo.get_ledger(user_id)
        return existing or LedgerSnapshot(user_id=user_id)

    async def award(self, user_id: str, points: int) -> AwardResult:
        if isinstance(points, bool) or not isinstance(points, int):
            raise InvalidInputError("points must be an integer")
        if points <= 0:
            raise InvalidInputError("points must be > 0")

        for attempt in range(1, self.max_attempts + 1):
            now = self.clock()
            today = local_today(now, self.timezone)

            stored = await self.repo.get_ledger(user_id)
            current = stored or LedgerSnapshot(user_id=user_id)
            updated, earned = apply_award(current, points, today, now, self.definitions)

            expected_version = stored.version if stored is not None else None
            written = replace(updated, version=current.version + 1)
            if await self.repo.write_ledger(written, expected_version):
                if earned:
                    log.info("Badges earned user=%s badges=%s", user_id, earned)
                return AwardResult(
                    user_id=user_id,
                    points_awarded=points,
                    previous_total=current.total_points,
                    new_total=written.total_points,
                    streak_days=written.streak_days,
                    newly_earned_badges=earned,
                    badges=list(written.badges),
                )

            log.warning("Ledger write conflict user=%s attempt=%s", user_id, attempt)

        raise LedgerConflictError(f"Ledger update for user {user_id} lost {self.max_attempts} concurrent writes")
