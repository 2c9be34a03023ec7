"""
Trigger source records.

Read-only views of rows owned by other subsystems (medication records,
family members, lifecycle notifications). Only the fields the scheduler
needs are mapped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

from healthgame.utils.timeutil import parse_date, parse_datetime


def _parse_reminder_time(value: Any) -> Optional[time]:
    text = str(value or "").strip()
    if not text:
        return None
    parts = text.split(":")
    try:
        hours = int(parts[0])
        minutes = int(parts[1]) if len(parts) > 1 else 0
        return time(hour=hours, minute=minutes)
    except ValueError:
        return None


@dataclass(frozen=True)
class FamilyMember:
    id: str
    name: Optional[str] = None

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "FamilyMember":
        return FamilyMember(id=str(row["id"]), name=row.get("name"))


@dataclass(frozen=True)
class MedicationRecord:
    id: str
    user_id: str
    medication_name: str
    reminder_times: List[time] = field(default_factory=list)
    family_member_id: Optional[str] = None
    dosage: str = ""
    frequency: str = ""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    reminder_enabled: bool = True

    def is_active_on(self, day: date) -> bool:
        if self.start_date is not None and day < self.start_date:
            return False
        if self.end_date is not None and day > self.end_date:
            return False
        return True

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "MedicationRecord":
        raw_times = row.get("reminder_times") or []
        times = [t for t in (_parse_reminder_time(x) for x in raw_times) if t is not None]
        return MedicationRecord(
            id=str(row["id"]),
            user_id=str(row.get("user_id")),
            family_member_id=row.get("family_member_id") or None,
            medication_name=str(row.get("medication_name") or "medication"),
            dosage=str(row.get("dosage") or ""),
            frequency=str(row.get("frequency") or ""),
            reminder_times=sorted(times),
            start_date=parse_date(row.get("start_date")),
            end_date=parse_date(row.get("end_date")),
            reminder_enabled=bool(row.get("reminder_enabled", True)),
        )


@dataclass(frozen=True)
class LifecycleNotification:
    id: str
    user_id: str
    title: str
    due_date: Optional[datetime] = None
    family_member_id: Optional[str] = None
    priority: str = "normal"
    category: Optional[str] = None
    message: Optional[str] = None
    status: str = "pending"
    context: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "LifecycleNotification":
        ctx = row.get("context_data")
        return LifecycleNotification(
            id=str(row["id"]),
            user_id=str(row.get("user_id")),
            family_member_id=row.get("family_member_id") or None,
            title=str(row.get("title") or ""),
            due_date=parse_datetime(row.get("scheduled_at")),
            priority=str(row.get("priority") or "normal"),
            category=row.get("category"),
            message=row.get("message"),
            status=str(row.get("status") or "pending"),
            context=ctx if isinstance(ctx, dict) else {},
        )
