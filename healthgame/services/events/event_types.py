"""
Game Event Model
================

Canonical in-process representation of scheduled game events, their typed
payloads, and the append-only interaction records written on completion.

Row mapping (to/from the `character_game_events` and
`character_game_interactions` tables) lives here so that the repository and
the services agree on one shape.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from healthgame.utils.timeutil import parse_datetime, to_iso

SELF_MEMBER_KEY = "self"


class EventType(str, Enum):
    MEDICATION = "medication"
    FEEDING = "feeding"
    HEALTH_CHECKUP = "health_checkup"
    VACCINATION = "vaccination"
    LIFECYCLE_MILESTONE = "lifecycle_milestone"
    CUSTOM = "custom"


class EventStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


OPEN_STATUSES = (EventStatus.PENDING.value, EventStatus.ACTIVE.value)


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    @classmethod
    def coerce(cls, value: Any) -> "Priority":
        try:
            return cls(str(value))
        except ValueError:
            return cls.NORMAL


_PRIORITY_RANK = {
    Priority.URGENT: 0,
    Priority.HIGH: 1,
    Priority.NORMAL: 2,
    Priority.LOW: 3,
}


def member_key(member_id: Optional[str]) -> str:
    return member_id or SELF_MEMBER_KEY


# -----------------------------
# Typed payloads
# -----------------------------
@dataclass(frozen=True)
class MedicationEventData:
    medication_record_id: str
    medication_name: str
    dosage: str
    frequency: str
    scheduled_time: str  # local "HH:MM"
    dialogue_message: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FeedingEventData:
    feeding_schedule_id: str
    baby_name: str
    feeding_interval_hours: float
    last_feeding_time: Optional[str]
    dialogue_message: str
    crying_intensity: int = 80

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LifecycleEventData:
    notification_id: str
    event_code: str
    event_name: str
    event_kind: str
    category: Optional[str]
    days_until: int
    dialogue_message: str
    has_professional_info: bool = False
    requires_user_choice: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# -----------------------------
# Event
# -----------------------------
@dataclass(frozen=True)
class GameEvent:
    user_id: str
    event_type: EventType
    scheduled_time: datetime
    trigger_key: str
    family_member_id: Optional[str] = None
    event_data: Dict[str, Any] = field(default_factory=dict)
    status: EventStatus = EventStatus.PENDING
    priority: Priority = Priority.NORMAL
    points_earned: int = 0
    experience_earned: int = 0
    completed_at: Optional[datetime] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status in (EventStatus.PENDING, EventStatus.ACTIVE)

    def with_id(self, event_id: str) -> "GameEvent":
        return replace(self, id=event_id)

    def to_row(self) -> Dict[str, Any]:
        row = {
            "user_id": self.user_id,
            "family_member_id": self.family_member_id,
            "event_type": self.event_type.value,
            "event_data": self.event_data or {},
            "scheduled_time": to_iso(self.scheduled_time),
            "status": self.status.value,
            "priority": self.priority.value,
            "points_earned": int(self.points_earned),
            "experience_earned": int(self.experience_earned),
            "completed_at": to_iso(self.completed_at),
            "trigger_key": self.trigger_key,
        }
        if self.id is not None:
            row["id"] = self.id
        if self.created_at is not None:
            row["created_at"] = to_iso(self.created_at)
        return row

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "GameEvent":
        data = row.get("event_data")
        return GameEvent(
            id=str(row["id"]) if row.get("id") is not None else None,
            user_id=str(row.get("user_id")),
            family_member_id=row.get("family_member_id") or None,
            event_type=EventType(row.get("event_type", EventType.CUSTOM.value)),
            event_data=data if isinstance(data, dict) else {},
            scheduled_time=parse_datetime(row.get("scheduled_time")),
            status=EventStatus(row.get("status", EventStatus.PENDING.value)),
            priority=Priority.coerce(row.get("priority")),
            points_earned=int(row.get("points_earned") or 0),
            experience_earned=int(row.get("experience_earned") or 0),
            completed_at=parse_datetime(row.get("completed_at")),
            trigger_key=str(row.get("trigger_key") or ""),
            created_at=parse_datetime(row.get("created_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return self.to_row()


# -----------------------------
# Interaction record (audit trail)
# -----------------------------
@dataclass(frozen=True)
class InteractionRecord:
    user_id: str
    event_id: Optional[str]
    interaction_type: str
    points_earned: int
    experience_earned: int
    family_member_id: Optional[str] = None
    interaction_data: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_row(self) -> Dict[str, Any]:
        row = {
            "user_id": self.user_id,
            "family_member_id": self.family_member_id,
            "event_id": self.event_id,
            "interaction_type": self.interaction_type,
            "interaction_data": self.interaction_data or {},
            "points_earned": int(self.points_earned),
            "experience_earned": int(self.experience_earned),
        }
        if self.id is not None:
            row["id"] = self.id
        if self.created_at is not None:
            row["created_at"] = to_iso(self.created_at)
        return row

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "InteractionRecord":
        data = row.get("interaction_data")
        return InteractionRecord(
            id=str(row["id"]) if row.get("id") is not None else None,
            user_id=str(row.get("user_id")),
            family_member_id=row.get("family_member_id") or None,
            event_id=row.get("event_id"),
            interaction_type=str(row.get("interaction_type") or ""),
            interaction_data=data if isinstance(data, dict) else {},
            points_earned=int(row.get("points_earned") or 0),
            experience_earned=int(row.get("experience_earned") or 0),
            created_at=parse_datetime(row.get("created_at")),
        )


class _AllMembers:
    def __repr__(self) -> str:
        return "ALL_MEMBERS"


# member filter meaning "self and every family member"
ALL_MEMBERS: Any = _AllMembers()
