"""
Level Progression
=================

Purpose:
- Accumulate experience per character (user + member) and derive its level.
- Unlock cosmetic skins when a level threshold is crossed.

Level rule:
    level = 1 + experience // level_step

Unlocks are inserted idempotently (unique on user + member + skin), so a
replayed crossing never duplicates a skin.

Repo contract:
- get_level(user_id, member_id) -> LevelSnapshot|None
- write_level(snapshot, expected_version: int|None) -> bool (same CAS rules as the ledger)
- list_cosmetic_unlocks(user_id, member_id) -> List[str]
- unlock_cosmetic(user_id, member_id, skin_id) -> bool (False if already unlocked)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from healthgame.errors import InvalidInputError, LedgerConflictError
from healthgame.services.events.event_types import member_key
from healthgame.utils.timeutil import Clock, parse_datetime, to_iso, utcnow

log = logging.getLogger("healthgame.levels")

COSMETIC_UNLOCKS: Mapping[int, str] = {
    5: "level_5_skin",
    10: "level_10_skin",
    20: "level_20_skin",
    50: "level_50_skin",
}


def level_for_experience(experience: int, level_step: int) -> int:
    return 1 + max(0, int(experience)) // int(level_step)


def unlocks_between(level_before: int, level_after: int) -> List[str]:
    """Skins whose threshold lies in (level_before, level_after], lowest first."""
    return [skin for threshold, skin in sorted(COSMETIC_UNLOCKS.items()) if level_before < threshold <= level_after]


def unlocks_up_to(level: int) -> List[str]:
    return [skin for threshold, skin in sorted(COSMETIC_UNLOCKS.items()) if threshold <= level]


@dataclass(frozen=True)
class LevelSnapshot:
    user_id: str
    family_member_id: Optional[str] = None
    level: int = 1
    experience: int = 0
    version: int = 0
    updated_at: Optional[datetime] = None

    @property
    def member_key(self) -> str:
        return member_key(self.family_member_id)

    def to_row(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "family_member_id": self.family_member_id,
            "member_key": self.member_key,
            "level": int(self.level),
            "experience": int(self.experience),
            "version": int(self.version),
            "updated_at": to_iso(self.updated_at),
        }

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "LevelSnapshot":
        return LevelSnapshot(
            user_id=str(row.get("user_id")),
            family_member_id=row.get("family_member_id") or None,
            level=int(row.get("level") or 1),
            experience=int(row.get("experience") or 0),
            version=int(row.get("version") or 0),
            updated_at=parse_datetime(row.get("updated_at")),
        )


@dataclass(frozen=True)
class LevelResult:
    user_id: str
    family_member_id: Optional[str]
    level_before: int
    level_after: int
    experience_total: int
    unlocked: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def leveled_up(self) -> bool:
        return self.level_after > self.level_before

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "family_member_id": self.family_member_id,
            "level_before": self.level_before,
            "level_after": self.level_after,
            "experience_total": self.experience_total,
            "unlocked": list(self.unlocked),
        }


class LevelProgression:
    def __init__(
        self,
        repo: Any,
        *,
        level_step: int = 1000,
        clock: Clock = utcnow,
        max_attempts: int = 5,
    ) -> None:
        if level_step <= 0:
            raise ValueError("level_step must be > 0")
        self.repo = repo
        self.level_step = int(level_step)
        self.clock = clock
        self.max_attempts = max(1, int(max_attempts))

    async def get_snapshot(self, user_id: str, member_id: Optional[str]) -> LevelSnapshot:
        existing = await self.repo.get_level(user_id, member_id)
        return existing or LevelSnapshot(user_id=user_id, family_member_id=member_id)

    async def add_experience(self, user_id: str, member_id: Optional[str], experience: int) -> LevelResult:
        if experience <= 0:
            raise InvalidInputError("experience must be > 0")

        for attempt in range(1, self.max_attempts + 1):
            stored = await self.repo.get_level(user_id, member_id)
            current = stored or LevelSnapshot(user_id=user_id, family_member_id=member_id)

            total = current.experience + int(experience)
            updated = replace(
                current,
                experience=total,
                level=max(current.level, level_for_experience(total, self.level_step)),
                version=current.version + 1,
                updated_at=self.clock(),
            )
            expected_version = stored.version if stored is not None else None
            if await self.repo.write_level(updated, expected_version):
                break
            log.warning("Level write conflict user=%s member=%s attempt=%s", user_id, member_key(member_id), attempt)
        else:
            raise LedgerConflictError(f"Level update for user {user_id} lost {self.max_attempts} concurrent writes")

        unlocked: List[str] = []
        for skin_id in unlocks_between(current.level, updated.level):
            if await self.repo.unlock_cosmetic(user_id, member_id, skin_id):
                unlocked.append(skin_id)

        if updated.level > current.level:
            log.info(
                "Level up user=%s member=%s %s -> %s unlocked=%s",
                user_id,
                member_key(member_id),
                current.level,
                updated.level,
                unlocked,
            )

        return LevelResult(
            user_id=user_id,
            family_member_id=member_id,
            level_before=current.level,
            level_after=updated.level,
            experience_total=updated.experience,
            unlocked=tuple(unlocked),
        )
