from datetime import timedelta

from healthgame.services.events.event_types import EventType, GameEvent, Priority
from healthgame.services.rewards.level_progression import LevelSnapshot
from healthgame.services.rewards.reward_ledger import LedgerSnapshot
from tests.conftest import NOW


def _pending(repo, key, priority=Priority.URGENT, member=None):
    return repo.add_event(
        GameEvent(
            user_id="u1",
            family_member_id=member,
            event_type=EventType.MEDICATION,
            priority=priority,
            scheduled_time=NOW - timedelta(minutes=1),
            trigger_key=key,
        )
    )


def _segments(report):
    return {r.segment: r.success for r in report.results}


async def test_consistent_after_completions(engine, repo):
    for i in range(6):
        event = _pending(repo, f"k{i}", member="kid" if i % 2 else None)
        await engine.complete_event(event.id, "u1")

    report = await engine.validate_user("u1")

    assert report.success, report.summary
    assert _segments(report) == {
        "points_to_badges": True,
        "level_to_cosmetics": True,
        "ledger_reconciliation": True,
        "experience_reconciliation": True,
    }
    assert (await engine.validate_user("u1", "kid")).success


async def test_reward_flow_check(engine, repo):
    event = _pending(repo, "k1")

    report = await engine.validator.validate_reward_flow(
        "u1", None, 100, lambda: engine.complete_event(event.id, "u1")
    )

    assert report.success
    delta = report.results[0]
    assert delta.segment == "points_delta"
    assert delta.data == {"points_before": 0, "points_after": 100, "expected": 100}


async def test_reward_flow_detects_wrong_delta(engine, repo):
    event = _pending(repo, "k1", priority=Priority.NORMAL)

    report = await engine.validator.validate_reward_flow(
        "u1", None, 100, lambda: engine.complete_event(event.id, "u1")
    )

    assert not report.success
    assert _segments(report)["points_delta"] is False
    assert "points_delta" in report.summary


async def test_reward_flow_that_raises(engine):
    async def broken():
        raise RuntimeError("nope")

    report = await engine.validator.validate_reward_flow("u1", None, 10, broken)

    assert not report.success
    assert report.results[0].segment == "flow"
    assert report.results[0].error == "nope"


async def test_missing_badge_is_reported(engine, repo):
    repo.ledgers["u1"] = LedgerSnapshot(user_id="u1", total_points=150, version=1)

    report = await engine.validate_user("u1")

    badges = next(r for r in report.results if r.segment == "points_to_badges")
    assert not badges.success
    assert badges.data["missing"] == ["points_100"]


async def test_missing_cosmetic_is_reported(engine, repo):
    repo.levels[("u1", "self")] = LevelSnapshot(user_id="u1", level=6, experience=5000, version=1)

    report = await engine.validate_user("u1")

    cosmetics = next(r for r in report.results if r.segment == "level_to_cosmetics")
    assert not cosmetics.success
    assert cosmetics.data["missing"] == ["level_5_skin"]
    assert _segments(report)["experience_reconciliation"] is False
