from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from healthgame.services.events.event_types import (
    ALL_MEMBERS,
    EventStatus,
    GameEvent,
    InteractionRecord,
    member_key,
)
from healthgame.services.events.trigger_sources import (
    FamilyMember,
    LifecycleNotification,
    MedicationRecord,
)
from healthgame.services.feeding.feeding_schedules import FeedingSchedule
from healthgame.services.rewards.level_progression import LevelSnapshot
from healthgame.services.rewards.reward_ledger import LedgerSnapshot
from healthgame.utils.timeutil import parse_datetime, utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class InMemoryEngineRepository:
    """
    Process-local implementation of the engine storage contract.

    Used by the test suite and when Supabase is not configured. The unique
    constraints of the real tables (trigger_key, ledger version, level
    version, skin per member) are enforced the same way.
    """

    def __init__(self) -> None:
        self.users: Dict[str, datetime] = {}
        self.members: Dict[str, List[FamilyMember]] = {}
        self.medications: List[MedicationRecord] = []
        self.notifications: List[LifecycleNotification] = []
        self.feeding: Dict[Tuple[str, str], FeedingSchedule] = {}
        self.events: Dict[str, GameEvent] = {}
        self.interactions: List[InteractionRecord] = []
        self.ledgers: Dict[str, LedgerSnapshot] = {}
        self.levels: Dict[Tuple[str, str], LevelSnapshot] = {}
        self.skins: Dict[Tuple[str, str], List[str]] = {}

    # -----------------------------
    # Seeding
    # -----------------------------
    def add_user(self, user_id: str, created_at: Optional[datetime] = None) -> None:
        self.users[user_id] = created_at or utcnow()

    def add_member(self, user_id: str, member_id: str, name: Optional[str] = None) -> FamilyMember:
        member = FamilyMember(id=member_id, name=name)
        self.members.setdefault(user_id, []).append(member)
        return member

    def add_medication(self, row: Dict[str, Any]) -> MedicationRecord:
        record = MedicationRecord.from_row({"id": _new_id(), **row})
        self.medications.append(record)
        return record

    def add_notification(self, row: Dict[str, Any]) -> LifecycleNotification:
        notification = LifecycleNotification.from_row({"id": _new_id(), **row})
        self.notifications.append(notification)
        return notification

    def add_event(self, event: GameEvent) -> GameEvent:
        stored = event if event.id else event.with_id(_new_id())
        self.events[stored.id] = stored
        return stored

    # -----------------------------
    # Trigger sources
    # -----------------------------
    async def list_active_users(self, since: datetime, limit: int) -> List[str]:
        ordered = sorted(self.users.items(), key=lambda kv: kv[1])
        return [user_id for user_id, created in ordered if created >= since][:limit]

    async def list_family_members(self, user_id: str) -> List[FamilyMember]:
        return list(self.members.get(user_id, []))

    async def list_medication_records(
        self, user_id: str, member_id: Optional[str], today: date
    ) -> List[MedicationRecord]:
        return [
            m
            for m in self.medications
            if m.user_id == user_id
            and m.family_member_id == member_id
            and m.reminder_enabled
            and (m.end_date is None or m.end_date >= today)
        ]

    async def list_lifecycle_notifications(
        self, user_id: str, member_id: Optional[str], limit: int
    ) -> List[LifecycleNotification]:
        matching = [
            n
            for n in self.notifications
            if n.user_id == user_id and n.family_member_id == member_id and n.status in ("pending", "sent")
        ]
        matching.sort(key=lambda n: n.due_date or datetime.min.replace(tzinfo=timezone.utc))
        return matching[:limit]

    # -----------------------------
    # Feeding schedules
    # -----------------------------
    async def list_active_feeding_schedules(self, user_id: str) -> List[FeedingSchedule]:
        return [s for (uid, _), s in self.feeding.items() if uid == user_id and s.is_active]

    async def get_feeding_schedule(self, user_id: str, member_id: Optional[str]) -> Optional[FeedingSchedule]:
        return self.feeding.get((user_id, member_key(member_id)))

    async def save_feeding_schedule(self, schedule: FeedingSchedule) -> FeedingSchedule:
        stored = schedule if schedule.id else replace(schedule, id=_new_id())
        self.feeding[(stored.user_id, stored.member_key)] = stored
        return stored

    # -----------------------------
    # Events
    # -----------------------------
    async def find_open_event(self, user_id: str, trigger_key: str) -> Optional[GameEvent]:
        for event in self.events.values():
            if event.user_id == user_id and event.trigger_key == trigger_key and event.is_open:
                return event
        return None

    async def insert_event_if_absent(self, event: GameEvent) -> Optional[GameEvent]:
        if any(e.trigger_key == event.trigger_key for e in self.events.values()):
            return None
        stored = replace(event, id=event.id or _new_id(), created_at=event.created_at or utcnow())
        self.events[stored.id] = stored
        return stored

    async def get_event(self, event_id: str, user_id: str) -> Optional[GameEvent]:
        event = self.events.get(event_id)
        return event if event is not None and event.user_id == user_id else None

    async def transition_event(
        self,
        event_id: str,
        user_id: str,
        from_statuses: Sequence[str],
        patch: Dict[str, Any],
    ) -> Optional[GameEvent]:
        event = await self.get_event(event_id, user_id)
        if event is None or event.status.value not in from_statuses:
            return None
        changes: Dict[str, Any] = {}
        for key, value in patch.items():
            if key == "status":
                changes[key] = EventStatus(value)
            elif key == "completed_at":
                changes[key] = parse_datetime(value)
            else:
                changes[key] = value
        updated = replace(event, **changes)
        self.events[event_id] = updated
        return updated

    async def list_events(
        self,
        user_id: str,
        member_id: Any = ALL_MEMBERS,
        statuses: Optional[Sequence[str]] = None,
        due_before: Optional[datetime] = None,
    ) -> List[GameEvent]:
        out = []
        for event in self.events.values():
            if event.user_id != user_id:
                continue
            if member_id is not ALL_MEMBERS and event.family_member_id != member_id:
                continue
            if statuses and event.status.value not in statuses:
                continue
            if due_before is not None and event.scheduled_time > due_before:
                continue
            out.append(event)
        return sorted(out, key=lambda e: e.scheduled_time)

    # -----------------------------
    # Interactions
    # -----------------------------
    async def insert_interaction(self, record: InteractionRecord) -> InteractionRecord:
        stored = replace(record, id=record.id or _new_id(), created_at=record.created_at or utcnow())
        self.interactions.append(stored)
        return stored

    async def list_interactions(self, user_id: str, member_id: Any = ALL_MEMBERS) -> List[InteractionRecord]:
        return [
            i
            for i in self.interactions
            if i.user_id == user_id and (member_id is ALL_MEMBERS or i.family_member_id == member_id)
        ]

    # -----------------------------
    # Ledger
    # -----------------------------
    async def get_ledger(self, user_id: str) -> Optional[LedgerSnapshot]:
        return self.ledgers.get(user_id)

    async def write_ledger(self, snapshot: LedgerSnapshot, expected_version: Optional[int]) -> bool:
        current = self.ledgers.get(snapshot.user_id)
        if expected_version is None:
            if current is not None:
                return False
        elif current is None or current.version != expected_version:
            return False
        self.ledgers[snapshot.user_id] = snapshot
        return True

    # -----------------------------
    # Levels & cosmetics
    # -----------------------------
    async def get_level(self, user_id: str, member_id: Optional[str]) -> Optional[LevelSnapshot]:
        return self.levels.get((user_id, member_key(member_id)))

    async def write_level(self, snapshot: LevelSnapshot, expected_version: Optional[int]) -> bool:
        key = (snapshot.user_id, snapshot.member_key)
        current = self.levels.get(key)
        if expected_version is None:
            if current is not None:
                return False
        elif current is None or current.version != expected_version:
            return False
        self.levels[key] = snapshot
        return True

    async def list_cosmetic_unlocks(self, user_id: str, member_id: Optional[str]) -> List[str]:
        return list(self.skins.get((user_id, member_key(member_id)), []))

    async def unlock_cosmetic(self, user_id: str, member_id: Optional[str], skin_id: str) -> bool:
        held = self.skins.setdefault((user_id, member_key(member_id)), [])
        if skin_id in held:
            return False
        held.append(skin_id)
        return True
