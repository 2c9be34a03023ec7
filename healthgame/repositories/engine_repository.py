from __future__ import annotations

import functools
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

import httpx
from postgrest.exceptions import APIError

from healthgame.errors import StorageUnavailableError
from healthgame.services.events.event_types import (
    ALL_MEMBERS,
    OPEN_STATUSES,
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
from healthgame.utils.timeutil import to_iso

UNIQUE_VIOLATION = "23505"


def _rows(r: Any) -> List[Dict[str, Any]]:
    return [row for row in (getattr(r, "data", None) or []) if isinstance(row, dict)]


def _first(r: Any) -> Optional[Dict[str, Any]]:
    data = getattr(r, "data", None) if r is not None else None
    if isinstance(data, list):
        return data[0] if data and isinstance(data[0], dict) else None
    return data if isinstance(data, dict) else None


def _for_member(query: Any, member_id: Optional[str]) -> Any:
    if member_id is None:
        return query.is_("family_member_id", "null")
    return query.eq("family_member_id", member_id)


def _storage_call(fn):
    """Network failures reaching PostgREST surface as StorageUnavailableError."""

    @functools.wraps(fn)
    async def wrapper(self, *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except httpx.TransportError as e:
            raise StorageUnavailableError(f"Storage unreachable in {fn.__name__}: {e}") from e

    return wrapper


class SupabaseEngineRepository:
    """
    Storage for the engine on top of supabase-py (PostgREST).

    Tables:
    - users, family_members, medication_records, notifications   (read-only trigger sources)
    - baby_feeding_schedules     unique (user_id, member_key)
    - character_game_events      unique (trigger_key)
    - character_game_interactions
    - gamification_ledgers       primary key (user_id), version column for CAS
    - character_levels           unique (user_id, member_key), version column for CAS
    - character_skins            unique (user_id, member_key, skin_id)

    supabase-py is synchronous; methods are async so that services can be
    written against one contract shared with the in-memory repository.
    """

    def __init__(
        self,
        supabase_client: Any,
        *,
        table_users: str = "users",
        table_members: str = "family_members",
        table_medications: str = "medication_records",
        table_notifications: str = "notifications",
        table_feeding: str = "baby_feeding_schedules",
        table_events: str = "character_game_events",
        table_interactions: str = "character_game_interactions",
        table_ledgers: str = "gamification_ledgers",
        table_levels: str = "character_levels",
        table_skins: str = "character_skins",
    ) -> None:
        self.sb = supabase_client
        self.table_users = table_users
        self.table_members = table_members
        self.table_medications = table_medications
        self.table_notifications = table_notifications
        self.table_feeding = table_feeding
        self.table_events = table_events
        self.table_interactions = table_interactions
        self.table_ledgers = table_ledgers
        self.table_levels = table_levels
        self.table_skins = table_skins

    # -----------------------------
    # Trigger sources
    # -----------------------------
    @_storage_call
    async def list_active_users(self, since: datetime, limit: int) -> List[str]:
        r = (
            self.sb.table(self.table_users)
            .select("id")
            .gte("created_at", to_iso(since))
            .order("created_at")
            .limit(limit)
            .execute()
        )
        return [str(row["id"]) for row in _rows(r) if row.get("id") is not None]

    @_storage_call
    async def list_family_members(self, user_id: str) -> List[FamilyMember]:
        r = (
            self.sb.table(self.table_members)
            .select("id,name")
            .eq("user_id", user_id)
            .order("created_at")
            .execute()
        )
        return [FamilyMember.from_row(row) for row in _rows(r)]

    @_storage_call
    async def list_medication_records(
        self, user_id: str, member_id: Optional[str], today: date
    ) -> List[MedicationRecord]:
        query = (
            self.sb.table(self.table_medications)
            .select("*")
            .eq("user_id", user_id)
            .eq("reminder_enabled", True)
            .or_(f"end_date.is.null,end_date.gte.{today.isoformat()}")
        )
        r = _for_member(query, member_id).execute()
        return [MedicationRecord.from_row(row) for row in _rows(r)]

    @_storage_call
    async def list_lifecycle_notifications(
        self, user_id: str, member_id: Optional[str], limit: int
    ) -> List[LifecycleNotification]:
        query = (
            self.sb.table(self.table_notifications)
            .select("*")
            .eq("user_id", user_id)
            .eq("type", "lifecycle_event")
            .in_("status", ["pending", "sent"])
        )
        r = _for_member(query, member_id).order("scheduled_at").limit(limit).execute()
        return [LifecycleNotification.from_row(row) for row in _rows(r)]

    # -----------------------------
    # Feeding schedules
    # -----------------------------
    @_storage_call
    async def list_active_feeding_schedules(self, user_id: str) -> List[FeedingSchedule]:
        r = (
            self.sb.table(self.table_feeding)
            .select("*")
            .eq("user_id", user_id)
            .eq("is_active", True)
            .execute()
        )
        return [FeedingSchedule.from_row(row) for row in _rows(r)]

    @_storage_call
    async def get_feeding_schedule(self, user_id: str, member_id: Optional[str]) -> Optional[FeedingSchedule]:
        r = (
            self.sb.table(self.table_feeding)
            .select("*")
            .eq("user_id", user_id)
            .eq("member_key", member_key(member_id))
            .maybe_single()
            .execute()
        )
        row = _first(r)
        return FeedingSchedule.from_row(row) if row else None

    @_storage_call
    async def save_feeding_schedule(self, schedule: FeedingSchedule) -> FeedingSchedule:
        r = (
            self.sb.table(self.table_feeding)
            .upsert(schedule.to_row(), on_conflict="user_id,member_key")
            .execute()
        )
        row = _first(r)
        return FeedingSchedule.from_row(row) if row else schedule

    # -----------------------------
    # Events
    # -----------------------------
    @_storage_call
    async def find_open_event(self, user_id: str, trigger_key: str) -> Optional[GameEvent]:
        r = (
            self.sb.table(self.table_events)
            .select("*")
            .eq("user_id", user_id)
            .eq("trigger_key", trigger_key)
            .in_("status", list(OPEN_STATUSES))
            .limit(1)
            .execute()
        )
        row = _first(r)
        return GameEvent.from_row(row) if row else None

    @_storage_call
    async def insert_event_if_absent(self, event: GameEvent) -> Optional[GameEvent]:
        r = (
            self.sb.table(self.table_events)
            .upsert(event.to_row(), on_conflict="trigger_key", ignore_duplicates=True)
            .execute()
        )
        row = _first(r)
        return GameEvent.from_row(row) if row else None

    @_storage_call
    async def get_event(self, event_id: str, user_id: str) -> Optional[GameEvent]:
        r = (
            self.sb.table(self.table_events)
            .select("*")
            .eq("id", event_id)
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        row = _first(r)
        return GameEvent.from_row(row) if row else None

    @_storage_call
    async def transition_event(
        self,
        event_id: str,
        user_id: str,
        from_statuses: Sequence[str],
        patch: Dict[str, Any],
    ) -> Optional[GameEvent]:
        r = (
            self.sb.table(self.table_events)
            .update(patch)
            .eq("id", event_id)
            .eq("user_id", user_id)
            .in_("status", list(from_statuses))
            .execute()
        )
        row = _first(r)
        return GameEvent.from_row(row) if row else None

    @_storage_call
    async def list_events(
        self,
        user_id: str,
        member_id: Any = ALL_MEMBERS,
        statuses: Optional[Sequence[str]] = None,
        due_before: Optional[datetime] = None,
    ) -> List[GameEvent]:
        query = self.sb.table(self.table_events).select("*").eq("user_id", user_id)
        if member_id is not ALL_MEMBERS:
            query = _for_member(query, member_id)
        if statuses:
            query = query.in_("status", list(statuses))
        if due_before is not None:
            query = query.lte("scheduled_time", to_iso(due_before))
        r = query.order("scheduled_time").execute()
        return [GameEvent.from_row(row) for row in _rows(r)]

    # -----------------------------
    # Interactions
    # -----------------------------
    @_storage_call
    async def insert_interaction(self, record: InteractionRecord) -> InteractionRecord:
        r = self.sb.table(self.table_interactions).insert(record.to_row()).execute()
        row = _first(r)
        return InteractionRecord.from_row(row) if row else record

    @_storage_call
    async def list_interactions(self, user_id: str, member_id: Any = ALL_MEMBERS) -> List[InteractionRecord]:
        query = self.sb.table(self.table_interactions).select("*").eq("user_id", user_id)
        if member_id is not ALL_MEMBERS:
            query = _for_member(query, member_id)
        r = query.order("created_at").execute()
        return [InteractionRecord.from_row(row) for row in _rows(r)]

    # -----------------------------
    # Ledger (compare-and-set on version)
    # -----------------------------
    def _insert_unique(self, table: str, row: Dict[str, Any]) -> bool:
        try:
            r = self.sb.table(table).insert(row).execute()
        except APIError as e:
            if getattr(e, "code", None) == UNIQUE_VIOLATION:
                return False
            raise
        return bool(_rows(r))

    @_storage_call
    async def get_ledger(self, user_id: str) -> Optional[LedgerSnapshot]:
        r = (
            self.sb.table(self.table_ledgers)
            .select("*")
            .eq("user_id", user_id)
            .maybe_single()
            .execute()
        )
        row = _first(r)
        return LedgerSnapshot.from_row(row) if row else None

    @_storage_call
    async def write_ledger(self, snapshot: LedgerSnapshot, expected_version: Optional[int]) -> bool:
        row = snapshot.to_row()
        if expected_version is None:
            return self._insert_unique(self.table_ledgers, row)
        r = (
            self.sb.table(self.table_ledgers)
            .update(row)
            .eq("user_id", snapshot.user_id)
            .eq("version", expected_version)
            .execute()
        )
        return bool(_rows(r))

    # -----------------------------
    # Levels & cosmetics
    # -----------------------------
    @_storage_call
    async def get_level(self, user_id: str, member_id: Optional[str]) -> Optional[LevelSnapshot]:
        r = (
            self.sb.table(self.table_levels)
            .select("*")
            .eq("user_id", user_id)
            .eq("member_key", member_key(member_id))
            .maybe_single()
            .execute()
        )
        row = _first(r)
        return LevelSnapshot.from_row(row) if row else None

    @_storage_call
    async def write_level(self, snapshot: LevelSnapshot, expected_version: Optional[int]) -> bool:
        row = snapshot.to_row()
        if expected_version is None:
            return self._insert_unique(self.table_levels, row)
        r = (
            self.sb.table(self.table_levels)
            .update(row)
            .eq("user_id", snapshot.user_id)
            .eq("member_key", snapshot.member_key)
            .eq("version", expected_version)
            .execute()
        )
        return bool(_rows(r))

    @_storage_call
    async def list_cosmetic_unlocks(self, user_id: str, member_id: Optional[str]) -> List[str]:
        r = (
            self.sb.table(self.table_skins)
            .select("skin_id")
            .eq("user_id", user_id)
            .eq("member_key", member_key(member_id))
            .order("unlocked_at")
            .execute()
        )
        return [str(row["skin_id"]) for row in _rows(r) if row.get("skin_id")]

    @_storage_call
    async def unlock_cosmetic(self, user_id: str, member_id: Optional[str], skin_id: str) -> bool:
        r = (
            self.sb.table(self.table_skins)
            .upsert(
                {
                    "user_id": user_id,
                    "family_member_id": member_id,
                    "member_key": member_key(member_id),
                    "skin_id": skin_id,
                },
                on_conflict="user_id,member_key,skin_id",
                ignore_duplicates=True,
            )
            .execute()
        )
        return bool(_rows(r))
