"""
Event Scheduler (Canonical)
===========================

Purpose:
- Turn trigger sources (medication reminders, feeding schedules, lifecycle
  notifications) into pending game events.
- Safe to re-run at any time: every trigger occurrence has a natural
  identity (its trigger key) and produces at most one open event.

Trigger keys:
- medication: medication:{user}:{member}:{record}:{local YYYY-MM-DDTHH:MM}
- feeding:    feeding:{user}:{member}:{schedule}:{UTC iso of next feeding}
- lifecycle:  lifecycle:{user}:{member}:{notification}

Duplicate protection is two-layered:
1) skip when an open (pending/active) event with the same key exists
2) the store inserts only if no row with that key exists (first writer wins)

A lifecycle key has no time component, so a notification yields at most one
event over its whole life, even after that event is completed.

Batch rules:
- Within a user: medication (self, then members) -> feeding -> lifecycle
  (self, then members). Each trigger unit is isolated; a failure is logged,
  counted and skipped. No retries inside a run; the next run picks it up.
- Across users: sequential, one page of recently active users.

Repo contract:
- list_active_users(since: datetime, limit: int) -> List[str]
- list_family_members(user_id) -> List[FamilyMember]
- list_medication_records(user_id, member_id, today: date) -> List[MedicationRecord]
- list_active_feeding_schedules(user_id) -> List[FeedingSchedule]
- get_feeding_schedule(user_id, member_id) -> FeedingSchedule|None
- save_feeding_schedule(schedule) -> FeedingSchedule
- list_lifecycle_notifications(user_id, member_id, limit) -> List[LifecycleNotification]
- find_open_event(user_id, trigger_key) -> GameEvent|None
- insert_event_if_absent(event) -> GameEvent|None (None when the key already exists)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from healthgame.services.events.event_types import (
    EventType,
    FeedingEventData,
    GameEvent,
    LifecycleEventData,
    MedicationEventData,
    Priority,
    member_key,
)
from healthgame.services.events.trigger_sources import (
    FamilyMember,
    LifecycleNotification,
    MedicationRecord,
)
from healthgame.services.feeding.feeding_interval import next_feeding_time
from healthgame.services.feeding.feeding_schedules import FeedingSchedule
from healthgame.settings import EngineSettings
from healthgame.utils.timeutil import Clock, to_iso, utcnow

log = logging.getLogger("healthgame.scheduler")

DEFAULT_BABY_NAME = "Baby"
FEEDING_CRYING_INTENSITY = 80

_LIFECYCLE_PRIORITIES = {
    Priority.URGENT.value: Priority.URGENT,
    Priority.HIGH.value: Priority.HIGH,
    Priority.LOW.value: Priority.LOW,
}


# -----------------------------
# Results
# -----------------------------
@dataclass
class ScheduleCounts:
    user_id: str
    medication: int = 0
    feeding: int = 0
    lifecycle: int = 0
    dropped_notifications: int = 0
    failed_units: int = 0

    @property
    def total(self) -> int:
        return self.medication + self.feeding + self.lifecycle

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "medication": self.medication,
            "feeding": self.feeding,
            "lifecycle": self.lifecycle,
            "dropped_notifications": self.dropped_notifications,
            "failed_units": self.failed_units,
            "total": self.total,
        }


@dataclass
class BatchResult:
    processed_users: int = 0
    failed_users: int = 0
    events_created: int = 0
    failed_units: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    failed_user_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed_users": self.processed_users,
            "failed_users": self.failed_users,
            "events_created": self.events_created,
            "failed_units": self.failed_units,
            "started_at": to_iso(self.started_at),
            "finished_at": to_iso(self.finished_at),
            "failed_user_ids": list(self.failed_user_ids),
        }


# -----------------------------
# Keys & dialogue
# -----------------------------
def medication_trigger_key(user_id: str, member_id: Optional[str], record_id: str, local_when: datetime) -> str:
    return f"medication:{user_id}:{member_key(member_id)}:{record_id}:{local_when.strftime('%Y-%m-%dT%H:%M')}"


def feeding_trigger_key(user_id: str, member_id: Optional[str], schedule_id: Optional[str], when: datetime) -> str:
    return f"feeding:{user_id}:{member_key(member_id)}:{schedule_id or 'schedule'}:{to_iso(when)}"


def lifecycle_trigger_key(user_id: str, member_id: Optional[str], notification_id: str) -> str:
    return f"lifecycle:{user_id}:{member_key(member_id)}:{notification_id}"


def lifecycle_dialogue(event_name: str, days_until: Optional[int], fallback: Optional[str] = None) -> str:
    if days_until is not None:
        if days_until < 0:
            return f"{event_name} has passed. Please check on it!"
        if days_until == 0:
            return f"{event_name} is today!"
        if days_until <= 7:
            return f"{event_name} is in {days_until} days. Time to prepare!"
        return f"{days_until} days left until {event_name}."
    return fallback or f"You have a {event_name} notification!"


def days_between(due: datetime, now: datetime) -> int:
    """Whole days from now until due, floored (negative when overdue)."""
    return math.floor((due - now).total_seconds() / 86400)


class EventScheduler:
    def __init__(self, repo: Any, settings: EngineSettings, *, clock: Clock = utcnow) -> None:
        self.repo = repo
        self.settings = settings
        self.clock = clock
        self.tz = ZoneInfo(settings.timezone)

    # -----------------------------
    # Shared insert path
    # -----------------------------
    async def _create_if_absent(self, event: GameEvent) -> bool:
        existing = await self.repo.find_open_event(event.user_id, event.trigger_key)
        if existing is not None:
            return False
        created = await self.repo.insert_event_if_absent(event)
        if created is None:
            log.debug("Trigger key already taken key=%s", event.trigger_key)
            return False
        return True

    # -----------------------------
    # Medication
    # -----------------------------
    async def schedule_medication_events(self, user_id: str, member_id: Optional[str]) -> int:
        now = self.clock()
        today = now.astimezone(self.tz).date()
        horizon_end = today + timedelta(days=self.settings.medication_horizon_days)

        records: List[MedicationRecord] = await self.repo.list_medication_records(user_id, member_id, today)
        created = 0
        for record in records:
            if not record.reminder_enabled or not record.reminder_times:
                continue
            if record.end_date is not None and record.end_date < today:
                continue
            last_day = min(horizon_end, record.end_date) if record.end_date else horizon_end

            day = today
            while day <= last_day:
                if record.is_active_on(day):
                    for reminder in record.reminder_times:
                        local_when = datetime.combine(day, reminder, tzinfo=self.tz)
                        if local_when < now:
                            continue
                        event = GameEvent(
                            user_id=user_id,
                            family_member_id=member_id,
                            event_type=EventType.MEDICATION,
                            scheduled_time=local_when.astimezone(timezone.utc),
                            trigger_key=medication_trigger_key(user_id, member_id, record.id, local_when),
                            priority=Priority.HIGH,
                            event_data=MedicationEventData(
                                medication_record_id=record.id,
                                medication_name=record.medication_name,
                                dosage=record.dosage,
                                frequency=record.frequency,
                                scheduled_time=reminder.strftime("%H:%M"),
                                dialogue_message=f"Time for {record.medication_name}. Medicine, please!",
                            ).to_dict(),
                        )
                        if await self._create_if_absent(event):
                            created += 1
                day += timedelta(days=1)

        if created:
            log.info("Medication events created user=%s member=%s count=%s", user_id, member_key(member_id), created)
        return created

    # -----------------------------
    # Feeding
    # -----------------------------
    async def schedule_feeding_events(
        self, user_id: str, member_id: Optional[str], member_name: Optional[str] = None
    ) -> int:
        schedule: Optional[FeedingSchedule] = await self.repo.get_feeding_schedule(user_id, member_id)
        if schedule is None or not schedule.is_active:
            return 0

        now = self.clock()
        when = next_feeding_time(
            schedule.last_feeding_time,
            schedule.next_feeding_time,
            schedule.feeding_interval_hours,
            now,
        )
        baby_name = member_name or DEFAULT_BABY_NAME
        event = GameEvent(
            user_id=schedule.user_id,
            family_member_id=schedule.family_member_id,
            event_type=EventType.FEEDING,
            scheduled_time=when,
            trigger_key=feeding_trigger_key(schedule.user_id, schedule.family_member_id, schedule.id, when),
            priority=Priority.URGENT,
            event_data=FeedingEventData(
                feeding_schedule_id=str(schedule.id or ""),
                baby_name=baby_name,
                feeding_interval_hours=schedule.feeding_interval_hours,
                last_feeding_time=to_iso(schedule.last_feeding_time),
                dialogue_message=f"{baby_name} is crying. Time for a feeding!",
                crying_intensity=FEEDING_CRYING_INTENSITY,
            ).to_dict(),
        )
        created = await self._create_if_absent(event)

        if schedule.next_feeding_time != when:
            await self.repo.save_feeding_schedule(replace(schedule, next_feeding_time=when))

        if created:
            log.info(
                "Feeding event created user=%s member=%s at=%s",
                schedule.user_id,
                schedule.member_key,
                to_iso(when),
            )
        return 1 if created else 0

    # -----------------------------
    # Lifecycle
    # -----------------------------
    async def schedule_lifecycle_events(self, user_id: str, member_id: Optional[str]) -> Tuple[int, int]:
        """Returns (created, dropped). Dropped notifications are too far overdue to back-fill."""
        now = self.clock()
        notifications: List[LifecycleNotification] = await self.repo.list_lifecycle_notifications(
            user_id, member_id, self.settings.lifecycle_notification_limit
        )
        ordered = sorted(
            notifications,
            key=lambda n: (Priority.coerce(n.priority).rank, n.due_date or now),
        )

        created = 0
        dropped = 0
        for notification in ordered:
            due = notification.due_date or now
            days_diff = days_between(due, now)
            if days_diff < -self.settings.lifecycle_lookback_days:
                dropped += 1
                log.warning(
                    "Dropping overdue lifecycle notification user=%s id=%s days=%s",
                    user_id,
                    notification.id,
                    days_diff,
                )
                continue

            ctx = notification.context
            event_name = ctx.get("event_name") or notification.title
            stated_days = ctx.get("days_until")
            days_until = int(stated_days) if stated_days is not None else days_diff
            dialogue = (
                lifecycle_dialogue(event_name, int(stated_days))
                if stated_days is not None
                else notification.message or lifecycle_dialogue(event_name, days_diff)
            )

            event = GameEvent(
                user_id=user_id,
                family_member_id=member_id,
                event_type=EventType.LIFECYCLE_MILESTONE,
                scheduled_time=due,
                trigger_key=lifecycle_trigger_key(user_id, member_id, notification.id),
                priority=_LIFECYCLE_PRIORITIES.get(notification.priority, Priority.NORMAL),
                event_data=LifecycleEventData(
                    notification_id=notification.id,
                    event_code=str(ctx.get("event_code") or ""),
                    event_name=event_name,
                    event_kind=str(ctx.get("event_type") or "milestone"),
                    category=notification.category,
                    days_until=days_until,
                    dialogue_message=dialogue,
                    has_professional_info=bool(ctx.get("has_professional_info", False)),
                    requires_user_choice=bool(ctx.get("requires_user_choice", False)),
                ).to_dict(),
            )
            if await self._create_if_absent(event):
                created += 1

        if created or dropped:
            log.info(
                "Lifecycle events user=%s member=%s created=%s dropped=%s",
                user_id,
                member_key(member_id),
                created,
                dropped,
            )
        return created, dropped

    # -----------------------------
    # Per-user orchestration
    # -----------------------------
    async def _run_unit(self, counts: ScheduleCounts, label: str, unit: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await unit()
        except Exception:
            counts.failed_units += 1
            log.exception("Trigger unit failed user=%s unit=%s", counts.user_id, label)
            return None

    async def schedule_events_for_user(self, user_id: str) -> ScheduleCounts:
        counts = ScheduleCounts(user_id=user_id)
        members: List[FamilyMember] = await self.repo.list_family_members(user_id)
        names = {m.id: m.name for m in members}
        targets: List[Optional[str]] = [None] + [m.id for m in members]

        for member_id in targets:
            created = await self._run_unit(
                counts,
                f"medication:{member_key(member_id)}",
                lambda m=member_id: self.schedule_medication_events(user_id, m),
            )
            counts.medication += created or 0

        schedules = await self._run_unit(
            counts, "feeding:list", lambda: self.repo.list_active_feeding_schedules(user_id)
        )
        for schedule in schedules or []:
            created = await self._run_unit(
                counts,
                f"feeding:{schedule.member_key}",
                lambda s=schedule: self.schedule_feeding_events(
                    user_id, s.family_member_id, names.get(s.family_member_id)
                ),
            )
            counts.feeding += created or 0

        for member_id in targets:
            outcome = await self._run_unit(
                counts,
                f"lifecycle:{member_key(member_id)}",
                lambda m=member_id: self.schedule_lifecycle_events(user_id, m),
            )
            if outcome is not None:
                counts.lifecycle += outcome[0]
                counts.dropped_notifications += outcome[1]

        return counts

    # -----------------------------
    # Batch
    # -----------------------------
    async def schedule_all_users(self) -> BatchResult:
        result = BatchResult(started_at=self.clock())
        since = result.started_at - timedelta(days=self.settings.active_user_days)

        user_ids = await self.repo.list_active_users(since, self.settings.batch_size)
        log.info("Scheduling batch started users=%s", len(user_ids))

        for user_id in user_ids:
            try:
                counts = await self.schedule_events_for_user(user_id)
            except Exception:
                result.failed_users += 1
                result.failed_user_ids.append(user_id)
                log.exception("Scheduling failed user=%s", user_id)
                continue
            result.processed_users += 1
            result.events_created += counts.total
            result.failed_units += counts.failed_units

        result.finished_at = self.clock()
        log.info(
            "Scheduling batch finished processed=%s failed=%s created=%s failed_units=%s",
            result.processed_users,
            result.failed_users,
            result.events_created,
            result.failed_units,
        )
        return result
