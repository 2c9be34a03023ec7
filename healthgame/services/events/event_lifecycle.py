"""
Event Lifecycle Manager (Canonical)
===================================

Purpose:
- Move events through pending -> active -> completed. Status never goes back.
- Issue the reward for a completed event exactly once.

Completion algorithm:
1) Load the event (scoped to the owning user).
2) Already completed -> report the stored reward, touch nothing.
3) Resolve the reward: explicit overrides (must be > 0) or the RewardPolicy.
4) ONE conditional update: status in (pending, active) -> completed, with
   completed_at / points_earned / experience_earned. Only the caller whose
   update matched a row issues the reward; a loser reports the stored result.
5) RewardLedger.award, then LevelProgression.add_experience, then append an
   interaction record. None of these can undo step 4. A failure here yields a
   successful result with ledger_synced=False and warnings, and the
   Interaction Validator reconciles later.

Repo contract:
- get_event(event_id, user_id) -> GameEvent|None
- transition_event(event_id, user_id, from_statuses, patch) -> GameEvent|None
    returns the updated event, or None when no row matched from_statuses
- list_events(user_id, member_id=ALL_MEMBERS, statuses=None, due_before=None) -> List[GameEvent]
- insert_interaction(record) -> InteractionRecord
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from healthgame.errors import EventNotFoundError
from healthgame.services.events.event_types import (
    ALL_MEMBERS,
    OPEN_STATUSES,
    EventStatus,
    GameEvent,
    InteractionRecord,
)
from healthgame.services.rewards.level_progression import LevelProgression
from healthgame.services.rewards.reward_ledger import RewardLedger
from healthgame.services.rewards.reward_policy import RewardPolicy
from healthgame.utils.timeutil import Clock, to_iso, utcnow

log = logging.getLogger("healthgame.lifecycle")

INTERACTION_EVENT_COMPLETED = "event_completed"


@dataclass
class CompletionResult:
    success: bool
    event: Optional[GameEvent] = None
    points_earned: int = 0
    experience_earned: int = 0
    new_total_points: Optional[int] = None
    newly_earned_badges: List[str] = field(default_factory=list)
    level_before: Optional[int] = None
    level_after: Optional[int] = None
    unlocked_cosmetics: List[str] = field(default_factory=list)
    already_completed: bool = False
    ledger_synced: bool = True
    error: Optional[str] = None
    error_code: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @staticmethod
    def failure(message: str, code: str) -> "CompletionResult":
        return CompletionResult(success=False, ledger_synced=False, error=message, error_code=code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "event": self.event.to_dict() if self.event else None,
            "points_earned": self.points_earned,
            "experience_earned": self.experience_earned,
            "new_total_points": self.new_total_points,
            "newly_earned_badges": list(self.newly_earned_badges),
            "level_before": self.level_before,
            "level_after": self.level_after,
            "unlocked_cosmetics": list(self.unlocked_cosmetics),
            "already_completed": self.already_completed,
            "ledger_synced": self.ledger_synced,
            "error": self.error,
            "error_code": self.error_code,
            "warnings": list(self.warnings),
        }


def _valid_override(value: Any) -> bool:
    return not isinstance(value, bool) and isinstance(value, int) and value > 0


class EventLifecycleManager:
    def __init__(
        self,
        repo: Any,
        *,
        policy: RewardPolicy,
        ledger: RewardLedger,
        levels: LevelProgression,
        clock: Clock = utcnow,
    ) -> None:
        self.repo = repo
        self.policy = policy
        self.ledger = ledger
        self.levels = levels
        self.clock = clock

    # -----------------------------
    # Activate
    # -----------------------------
    async def activate(self, event_id: str, user_id: str) -> GameEvent:
        """pending -> active. Any other status is returned unchanged."""
        event = await self.repo.get_event(event_id, user_id)
        if event is None:
            raise EventNotFoundError(f"Event {event_id} not found")
        if event.status != EventStatus.PENDING:
            return event

        updated = await self.repo.transition_event(
            event_id,
            user_id,
            (EventStatus.PENDING.value,),
            {"status": EventStatus.ACTIVE.value},
        )
        if updated is None:
            # lost to a concurrent activate/complete
            current = await self.repo.get_event(event_id, user_id)
            return current or event

        log.info("Event activated id=%s user=%s", event_id, user_id)
        return updated

    # -----------------------------
    # Complete
    # -----------------------------
    async def complete(
        self,
        event_id: str,
        user_id: str,
        *,
        points: Optional[int] = None,
        experience: Optional[int] = None,
    ) -> CompletionResult:
        event = await self.repo.get_event(event_id, user_id)
        if event is None:
            return CompletionResult.failure(f"Event {event_id} not found", EventNotFoundError.code)

        if event.status == EventStatus.COMPLETED:
            return self._stored_result(event)

        if points is not None and not _valid_override(points):
            return CompletionResult.failure("points must be a positive integer", "invalid_input")
        if experience is not None and not _valid_override(experience):
            return CompletionResult.failure("experience must be a positive integer", "invalid_input")

        default_points, default_experience = self.policy.reward_for(event.event_type, event.priority)
        points_earned = points if points is not None else default_points
        experience_earned = experience if experience is not None else default_experience
        if points_earned <= 0 or experience_earned <= 0:
            return CompletionResult.failure("resolved reward must be positive", "invalid_input")

        now = self.clock()
        completed = await self.repo.transition_event(
            event_id,
            user_id,
            OPEN_STATUSES,
            {
                "status": EventStatus.COMPLETED.value,
                "completed_at": to_iso(now),
                "points_earned": points_earned,
                "experience_earned": experience_earned,
            },
        )
        if completed is None:
            current = await self.repo.get_event(event_id, user_id)
            log.info("Completion lost race id=%s user=%s", event_id, user_id)
            if current is not None and current.status == EventStatus.COMPLETED:
                return self._stored_result(current)
            return CompletionResult.failure(f"Event {event_id} could not be completed", "conflict")

        result = CompletionResult(
            success=True,
            event=completed,
            points_earned=points_earned,
            experience_earned=experience_earned,
        )
        await self._propagate_reward(completed, result)
        log.info(
            "Event completed id=%s user=%s type=%s points=%s synced=%s",
            event_id,
            user_id,
            completed.event_type.value,
            points_earned,
            result.ledger_synced,
        )
        return result

    async def _propagate_reward(self, event: GameEvent, result: CompletionResult) -> None:
        try:
            award = await self.ledger.award(event.user_id, result.points_earned)
            result.new_total_points = award.new_total
            result.newly_earned_badges = list(award.newly_earned_badges)
        except Exception as ex:
            result.ledger_synced = False
            result.warnings.append(f"ledger update failed: {ex}")
            log.exception("Ledger update failed after completion id=%s user=%s", event.id, event.user_id)

        try:
            level = await self.levels.add_experience(event.user_id, event.family_member_id, result.experience_earned)
            result.level_before = level.level_before
            result.level_after = level.level_after
            result.unlocked_cosmetics = list(level.unlocked)
        except Exception as ex:
            result.ledger_synced = False
            result.warnings.append(f"level update failed: {ex}")
            log.exception("Level update failed after completion id=%s user=%s", event.id, event.user_id)

        record = InteractionRecord(
            user_id=event.user_id,
            family_member_id=event.family_member_id,
            event_id=event.id,
            interaction_type=INTERACTION_EVENT_COMPLETED,
            points_earned=result.points_earned,
            experience_earned=result.experience_earned,
            interaction_data={
                "event_type": event.event_type.value,
                "event_data": event.event_data,
                "ledger_synced": result.ledger_synced,
            },
        )
        try:
            await self.repo.insert_interaction(record)
        except Exception as ex:
            result.ledger_synced = False
            result.warnings.append(f"interaction record failed: {ex}")
            log.exception("Interaction record failed id=%s user=%s", event.id, event.user_id)

    @staticmethod
    def _stored_result(event: GameEvent) -> CompletionResult:
        return CompletionResult(
            success=True,
            event=event,
            points_earned=event.points_earned,
            experience_earned=event.experience_earned,
            already_completed=True,
        )

    # -----------------------------
    # Queries
    # -----------------------------
    async def list_active_events(self, user_id: str, member_id: Any = ALL_MEMBERS) -> List[GameEvent]:
        """Open events already due, most urgent first, then oldest first."""
        events = await self.repo.list_events(
            user_id,
            member_id=member_id,
            statuses=OPEN_STATUSES,
            due_before=self.clock(),
        )
        return sorted(events, key=lambda e: (e.priority.rank, e.scheduled_time))
