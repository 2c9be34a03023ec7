"""
Feeding Schedules
=================

Purpose:
- Create/update, read and deactivate a per-(user, member) feeding schedule.
- Record a completed feeding (the external "feed completed" action) and roll
  the next feeding time forward.

Next-time computation always goes through feeding_interval.next_feeding_time.

Repo contract:
- get_feeding_schedule(user_id, member_id) -> FeedingSchedule|None
- save_feeding_schedule(schedule) -> FeedingSchedule (upsert keyed by user_id + member)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Optional

from healthgame.errors import EventNotFoundError, InvalidInputError
from healthgame.services.events.event_types import member_key
from healthgame.services.feeding.feeding_interval import interval_delta, next_feeding_time
from healthgame.utils.timeutil import Clock, parse_datetime, to_iso, utcnow

log = logging.getLogger("healthgame.feeding")


@dataclass(frozen=True)
class FeedingSchedule:
    user_id: str
    family_member_id: Optional[str]
    feeding_interval_hours: float
    last_feeding_time: Optional[datetime] = None
    next_feeding_time: Optional[datetime] = None
    is_active: bool = True
    reminder_enabled: bool = True
    reminder_minutes_before: int = 10
    notes: Optional[str] = None
    id: Optional[str] = None

    @property
    def member_key(self) -> str:
        return member_key(self.family_member_id)

    def to_row(self) -> Dict[str, Any]:
        row = {
            "user_id": self.user_id,
            "family_member_id": self.family_member_id,
            "member_key": self.member_key,
            "feeding_interval_hours": float(self.feeding_interval_hours),
            "last_feeding_time": to_iso(self.last_feeding_time),
            "next_feeding_time": to_iso(self.next_feeding_time),
            "is_active": bool(self.is_active),
            "reminder_enabled": bool(self.reminder_enabled),
            "reminder_minutes_before": int(self.reminder_minutes_before),
            "notes": self.notes,
        }
        if self.id is not None:
            row["id"] = self.id
        return row

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "FeedingSchedule":
        return FeedingSchedule(
            id=str(row["id"]) if row.get("id") is not None else None,
            user_id=str(row.get("user_id")),
            family_member_id=row.get("family_member_id") or None,
            feeding_interval_hours=float(row.get("feeding_interval_hours") or 0),
            last_feeding_time=parse_datetime(row.get("last_feeding_time")),
            next_feeding_time=parse_datetime(row.get("next_feeding_time")),
            is_active=bool(row.get("is_active", True)),
            reminder_enabled=bool(row.get("reminder_enabled", True)),
            reminder_minutes_before=(
                10 if row.get("reminder_minutes_before") is None else int(row["reminder_minutes_before"])
            ),
            notes=row.get("notes"),
        )


class FeedingScheduleService:
    def __init__(self, repo: Any, *, clock: Clock = utcnow) -> None:
        self.repo = repo
        self.clock = clock

    async def upsert_schedule(
        self,
        *,
        user_id: str,
        member_id: Optional[str],
        interval_hours: float,
        reminder_enabled: bool = True,
        reminder_minutes_before: int = 10,
        notes: Optional[str] = None,
    ) -> FeedingSchedule:
        interval_delta(interval_hours)
        if reminder_minutes_before < 0:
            raise InvalidInputError("reminder_minutes_before cannot be negative")

        now = self.clock()
        existing = await self.repo.get_feeding_schedule(user_id, member_id)

        next_time = next_feeding_time(
            existing.last_feeding_time if existing else None,
            existing.next_feeding_time if existing else None,
            interval_hours,
            now,
        )

        base = existing or FeedingSchedule(
            user_id=user_id,
            family_member_id=member_id,
            feeding_interval_hours=interval_hours,
        )
        schedule = replace(
            base,
            feeding_interval_hours=float(interval_hours),
            next_feeding_time=next_time,
            is_active=True,
            reminder_enabled=reminder_enabled,
            reminder_minutes_before=reminder_minutes_before,
            notes=notes,
        )
        saved = await self.repo.save_feeding_schedule(schedule)
        log.info(
            "Feeding schedule saved user=%s member=%s next=%s",
            user_id,
            member_key(member_id),
            to_iso(saved.next_feeding_time),
        )
        return saved

    async def record_feeding(self, *, user_id: str, member_id: Optional[str]) -> FeedingSchedule:
        schedule = await self.repo.get_feeding_schedule(user_id, member_id)
        if schedule is None:
            raise EventNotFoundError("Feeding schedule not found")

        now = self.clock()
        next_time = next_feeding_time(
            now,
            schedule.next_feeding_time,
            schedule.feeding_interval_hours,
            now,
        )
        updated = replace(schedule, last_feeding_time=now, next_feeding_time=next_time)
        saved = await self.repo.save_feeding_schedule(updated)
        log.info(
            "Feeding recorded user=%s member=%s next=%s",
            user_id,
            member_key(member_id),
            to_iso(saved.next_feeding_time),
        )
        return saved

    async def get_schedule(self, *, user_id: str, member_id: Optional[str]) -> Optional[FeedingSchedule]:
        return await self.repo.get_feeding_schedule(user_id, member_id)

    async def deactivate_schedule(self, *, user_id: str, member_id: Optional[str]) -> FeedingSchedule:
        schedule = await self.repo.get_feeding_schedule(user_id, member_id)
        if schedule is None:
            raise EventNotFoundError("Feeding schedule not found")
        saved = await self.repo.save_feeding_schedule(replace(schedule, is_active=False))
        log.info("Feeding schedule deactivated user=%s member=%s", user_id, member_key(member_id))
        return saved
