"""
Interaction Validator
=====================

Audits that the derived aggregates agree with each other:

- points_delta            a reward flow moved the ledger by exactly the expected amount
- points_to_badges        every badge whose predicate holds is actually held
- level_to_cosmetics      every cosmetic threshold at or below the level is unlocked
- ledger_reconciliation   interaction points for the user sum to the ledger total
- experience_reconciliation  interaction experience for the member sums to the level's experience

validate_all only reads. validate_reward_flow runs the flow it is given
(typically an event completion) between two snapshots.

Repo contract (beyond the ledger/level services):
- list_cosmetic_unlocks(user_id, member_id) -> List[str]
- list_interactions(user_id, member_id=ALL_MEMBERS) -> List[InteractionRecord]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from healthgame.services.events.event_types import ALL_MEMBERS, member_key
from healthgame.services.rewards.badges import qualifying_badges
from healthgame.services.rewards.level_progression import LevelProgression, unlocks_between, unlocks_up_to
from healthgame.services.rewards.reward_ledger import LedgerSnapshot, RewardLedger

log = logging.getLogger("healthgame.validator")


@dataclass
class FlowCheckResult:
    segment: str
    success: bool
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {"segment": self.segment, "success": self.success, "message": self.message, "data": self.data}
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class ValidationReport:
    success: bool
    results: List[FlowCheckResult] = field(default_factory=list)
    summary: str = ""

    @staticmethod
    def from_results(results: List[FlowCheckResult]) -> "ValidationReport":
        success = all(r.success for r in results)
        if success:
            summary = "All game interactions are consistent."
        else:
            failed = ", ".join(r.segment for r in results if not r.success)
            summary = f"Inconsistent segments: {failed}"
        return ValidationReport(success=success, results=results, summary=summary)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "results": [r.to_dict() for r in self.results],
            "summary": self.summary,
        }


class InteractionValidator:
    def __init__(self, repo: Any, *, ledger: RewardLedger, levels: LevelProgression) -> None:
        self.repo = repo
        self.ledger = ledger
        self.levels = levels

    # -----------------------------
    # Segment checks
    # -----------------------------
    def _check_badges(self, snapshot: LedgerSnapshot) -> FlowCheckResult:
        expected = qualifying_badges(snapshot.badge_snapshot(), self.ledger.definitions)
        missing = [b for b in expected if b not in snapshot.badges]
        return FlowCheckResult(
            segment="points_to_badges",
            success=not missing,
            message="All qualifying badges are held." if not missing else "Qualifying badges are missing.",
            data={"total_points": snapshot.total_points, "badges": list(snapshot.badges), "missing": missing},
        )

    async def _check_cosmetics(
        self, user_id: str, member_id: Optional[str], expected: List[str], level: int
    ) -> FlowCheckResult:
        unlocked = await self.repo.list_cosmetic_unlocks(user_id, member_id)
        missing = [s for s in expected if s not in unlocked]
        return FlowCheckResult(
            segment="level_to_cosmetics",
            success=not missing,
            message="All level cosmetics are unlocked." if not missing else "Level cosmetics are missing.",
            data={"level": level, "unlocked": list(unlocked), "missing": missing},
        )

    # -----------------------------
    # Flow validation
    # -----------------------------
    async def validate_reward_flow(
        self,
        user_id: str,
        member_id: Optional[str],
        expected_points: int,
        flow: Callable[[], Awaitable[Any]],
    ) -> ValidationReport:
        ledger_before = await self.ledger.get_snapshot(user_id)
        level_before = await self.levels.get_snapshot(user_id, member_id)

        try:
            await flow()
        except Exception as ex:
            log.exception("Validated flow raised user=%s", user_id)
            return ValidationReport.from_results(
                [FlowCheckResult(segment="flow", success=False, message="The flow raised.", error=str(ex))]
            )

        ledger_after = await self.ledger.get_snapshot(user_id)
        level_after = await self.levels.get_snapshot(user_id, member_id)

        delta = ledger_after.total_points - ledger_before.total_points
        results = [
            FlowCheckResult(
                segment="points_delta",
                success=delta == expected_points,
                message=(
                    "Points moved by the expected amount."
                    if delta == expected_points
                    else f"Expected +{expected_points} points, got {delta:+d}."
                ),
                data={
                    "points_before": ledger_before.total_points,
                    "points_after": ledger_after.total_points,
                    "expected": expected_points,
                },
            ),
            self._check_badges(ledger_after),
            await self._check_cosmetics(
                user_id,
                member_id,
                unlocks_between(level_before.level, level_after.level),
                level_after.level,
            ),
        ]
        report = ValidationReport.from_results(results)
        if not report.success:
            log.warning("Reward flow inconsistent user=%s summary=%s", user_id, report.summary)
        return report

    # -----------------------------
    # Periodic audit
    # -----------------------------
    async def validate_all(self, user_id: str, member_id: Optional[str] = None) -> ValidationReport:
        ledger = await self.ledger.get_snapshot(user_id)
        level = await self.levels.get_snapshot(user_id, member_id)

        all_interactions = await self.repo.list_interactions(user_id, member_id=ALL_MEMBERS)
        member_interactions = [i for i in all_interactions if member_key(i.family_member_id) == member_key(member_id)]

        interaction_points = sum(i.points_earned for i in all_interactions)
        member_experience = sum(i.experience_earned for i in member_interactions)

        results = [
            self._check_badges(ledger),
            await self._check_cosmetics(user_id, member_id, unlocks_up_to(level.level), level.level),
            FlowCheckResult(
                segment="ledger_reconciliation",
                success=interaction_points == ledger.total_points,
                message=(
                    "Ledger total matches completed interactions."
                    if interaction_points == ledger.total_points
                    else "Ledger total differs from completed interactions."
                ),
                data={"ledger_total": ledger.total_points, "interaction_total": interaction_points},
            ),
            FlowCheckResult(
                segment="experience_reconciliation",
                success=member_experience == level.experience,
                message=(
                    "Level experience matches completed interactions."
                    if member_experience == level.experience
                    else "Level experience differs from completed interactions."
                ),
                data={"level_experience": level.experience, "interaction_experience": member_experience},
            ),
        ]
        report = ValidationReport.from_results(results)
        log.info("Validation user=%s member=%s ok=%s", user_id, member_key(member_id), report.success)
        return report
