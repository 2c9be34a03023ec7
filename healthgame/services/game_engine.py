"""
Game Engine
===========

Facade wiring the services around one storage dependency. Routes, the
periodic job and scripts go through this class only.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional
from zoneinfo import ZoneInfo

from healthgame.services.events.event_lifecycle import CompletionResult, EventLifecycleManager
from healthgame.services.events.event_scheduler import BatchResult, EventScheduler, ScheduleCounts
from healthgame.services.events.event_types import ALL_MEMBERS, GameEvent
from healthgame.services.feeding.feeding_schedules import FeedingSchedule, FeedingScheduleService
from healthgame.services.rewards.level_progression import LevelProgression
from healthgame.services.rewards.reward_ledger import RewardLedger
from healthgame.services.rewards.reward_policy import RewardPolicy
from healthgame.services.status.emotion_deriver import DerivedStatus, HealthSignals, derive_status
from healthgame.services.validation.interaction_validator import InteractionValidator, ValidationReport
from healthgame.settings import EngineSettings
from healthgame.utils.timeutil import Clock, utcnow

log = logging.getLogger("healthgame.engine")


class GameEngine:
    def __init__(self, repo: Any, settings: EngineSettings, *, clock: Clock = utcnow) -> None:
        self.repo = repo
        self.settings = settings
        self.clock = clock

        self.policy = RewardPolicy.from_dict(settings.reward_policy)
        self.ledger = RewardLedger(
            repo,
            timezone=settings.timezone,
            clock=clock,
            max_attempts=settings.ledger_max_attempts,
        )
        self.levels = LevelProgression(
            repo,
            level_step=settings.level_experience_step,
            clock=clock,
            max_attempts=settings.ledger_max_attempts,
        )
        self.scheduler = EventScheduler(repo, settings, clock=clock)
        self.lifecycle = EventLifecycleManager(
            repo,
            policy=self.policy,
            ledger=self.ledger,
            levels=self.levels,
            clock=clock,
        )
        self.feeding = FeedingScheduleService(repo, clock=clock)
        self.validator = InteractionValidator(repo, ledger=self.ledger, levels=self.levels)

        log.info("Game engine ready tz=%s policy=%s", settings.timezone, self.policy.version)

    # ----- Scheduling -----

    async def schedule_events_for_user(self, user_id: str) -> ScheduleCounts:
        return await self.scheduler.schedule_events_for_user(user_id)

    async def schedule_all_users(self) -> BatchResult:
        return await self.scheduler.schedule_all_users()

    # ----- Event lifecycle -----

    async def activate_event(self, event_id: str, user_id: str) -> GameEvent:
        return await self.lifecycle.activate(event_id, user_id)

    async def complete_event(
        self,
        event_id: str,
        user_id: str,
        points: Optional[int] = None,
        experience: Optional[int] = None,
    ) -> CompletionResult:
        return await self.lifecycle.complete(event_id, user_id, points=points, experience=experience)

    async def list_active_events(self, user_id: str, member_id: Any = ALL_MEMBERS) -> List[GameEvent]:
        return await self.lifecycle.list_active_events(user_id, member_id)

    # ----- Feeding -----

    async def upsert_feeding_schedule(self, **kwargs: Any) -> FeedingSchedule:
        return await self.feeding.upsert_schedule(**kwargs)

    async def record_feeding(self, user_id: str, member_id: Optional[str]) -> FeedingSchedule:
        return await self.feeding.record_feeding(user_id=user_id, member_id=member_id)

    async def get_feeding_schedule(self, user_id: str, member_id: Optional[str]) -> Optional[FeedingSchedule]:
        return await self.feeding.get_schedule(user_id=user_id, member_id=member_id)

    async def deactivate_feeding_schedule(self, user_id: str, member_id: Optional[str]) -> FeedingSchedule:
        return await self.feeding.deactivate_schedule(user_id=user_id, member_id=member_id)

    # ----- Audit & display -----

    async def validate_user(self, user_id: str, member_id: Optional[str] = None) -> ValidationReport:
        return await self.validator.validate_all(user_id, member_id)

    def derive_status(self, signals: HealthSignals) -> DerivedStatus:
        local_now = self.clock().astimezone(ZoneInfo(self.settings.timezone))
        return derive_status(signals, local_now)

