"""
Reward Policy (Canonical)
=========================

Single source of truth for how many points and how much experience a
completed event is worth.

Reward math:
    points     = floor(base_points[event_type] * priority_multiplier[priority])
    experience = points * experience_per_point

The default tables reproduce the values the product shipped with. They are a
configuration surface (see REWARD_POLICY_JSON), not business logic: no
ordering between event types is implied beyond the numbers themselves.

Non-goals:
- No DB access.
- No HTTP.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Tuple

from healthgame.services.events.event_types import EventType, Priority

DEFAULT_BASE_POINTS: Dict[str, int] = {
    EventType.MEDICATION.value: 50,
    EventType.FEEDING.value: 30,
    EventType.HEALTH_CHECKUP.value: 100,
    EventType.VACCINATION.value: 80,
    EventType.LIFECYCLE_MILESTONE.value: 60,
    EventType.CUSTOM.value: 40,
}

DEFAULT_PRIORITY_MULTIPLIERS: Dict[str, float] = {
    Priority.LOW.value: 0.5,
    Priority.NORMAL.value: 1.0,
    Priority.HIGH.value: 1.5,
    Priority.URGENT.value: 2.0,
}

DEFAULT_FALLBACK_POINTS = 40
DEFAULT_EXPERIENCE_PER_POINT = 10


@dataclass(frozen=True)
class RewardPolicy:
    base_points: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_BASE_POINTS))
    priority_multipliers: Mapping[str, float] = field(
        default_factory=lambda: dict(DEFAULT_PRIORITY_MULTIPLIERS)
    )
    fallback_points: int = DEFAULT_FALLBACK_POINTS
    experience_per_point: int = DEFAULT_EXPERIENCE_PER_POINT
    version: str = "default"

    def __post_init__(self) -> None:
        self._validate()

    # -----------------------------
    # Validation
    # -----------------------------
    def _validate(self) -> None:
        for key, value in self.base_points.items():
            if key not in {t.value for t in EventType}:
                raise ValueError(f"unknown event type in base_points: {key}")
            if int(value) <= 0:
                raise ValueError(f"base_points[{key}] must be > 0")
        for key, value in self.priority_multipliers.items():
            if key not in {p.value for p in Priority}:
                raise ValueError(f"unknown priority in priority_multipliers: {key}")
            if not math.isfinite(float(value)) or float(value) <= 0:
                raise ValueError(f"priority_multipliers[{key}] must be > 0")
        if self.fallback_points <= 0:
            raise ValueError("fallback_points must be > 0")
        if self.experience_per_point <= 0:
            raise ValueError("experience_per_point must be > 0")
        for event_type in EventType:
            for priority in Priority:
                if self.points_for(event_type, priority) < 1:
                    raise ValueError(
                        f"{event_type.value} at {priority.value} priority rounds down to 0 points"
                    )

    # -----------------------------
    # Reward math
    # -----------------------------
    def points_for(self, event_type: EventType, priority: Priority) -> int:
        base = int(self.base_points.get(event_type.value, self.fallback_points))
        multiplier = float(self.priority_multipliers.get(priority.value, 1.0))
        return int(math.floor(base * multiplier))

    def experience_for_points(self, points: int) -> int:
        return int(points) * int(self.experience_per_point)

    def reward_for(self, event_type: EventType, priority: Priority) -> Tuple[int, int]:
        points = self.points_for(event_type, priority)
        return points, self.experience_for_points(points)

    # -----------------------------
    # Serialization
    # -----------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_points": dict(self.base_points),
            "priority_multipliers": dict(self.priority_multipliers),
            "fallback_points": self.fallback_points,
            "experience_per_point": self.experience_per_point,
            "version": self.version,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any] | None) -> "RewardPolicy":
        """
        Build a policy from stored/env JSON. Missing tables fall back to the
        defaults; partial tables are merged over the defaults.
        """
        data = data or {}

        base = dict(DEFAULT_BASE_POINTS)
        if isinstance(data.get("base_points"), dict):
            base.update({str(k): int(v) for k, v in data["base_points"].items()})

        multipliers = dict(DEFAULT_PRIORITY_MULTIPLIERS)
        if isinstance(data.get("priority_multipliers"), dict):
            multipliers.update({str(k): float(v) for k, v in data["priority_multipliers"].items()})

        return RewardPolicy(
            base_points=base,
            priority_multipliers=multipliers,
            fallback_points=int(data.get("fallback_points", DEFAULT_FALLBACK_POINTS)),
            experience_per_point=int(data.get("experience_per_point", DEFAULT_EXPERIENCE_PER_POINT)),
            version=str(data.get("version", "custom" if data else "default")),
        )
