from datetime import datetime, timedelta, timezone

import pytest

from healthgame.repositories.memory_repository import InMemoryEngineRepository
from healthgame.services.events.event_scheduler import EventScheduler, lifecycle_dialogue
from healthgame.services.events.event_types import EventStatus, EventType, Priority
from healthgame.services.game_engine import GameEngine
from healthgame.settings import EngineSettings
from tests.conftest import NOW, FixedClock


@pytest.fixture
def scheduler(repo, settings, clock):
    return EventScheduler(repo, settings, clock=clock)


def _events(repo, event_type=None):
    events = sorted(repo.events.values(), key=lambda e: e.scheduled_time)
    return [e for e in events if event_type is None or e.event_type == event_type]


# ----- Medication -----


async def test_medication_fills_horizon(scheduler, repo):
    record = repo.add_medication(
        {"user_id": "u1", "medication_name": "Vitamin D", "dosage": "1 tab", "reminder_times": ["21:00", "09:00"]}
    )

    created = await scheduler.schedule_medication_events("u1", None)

    assert created == 16
    first = _events(repo)[0]
    assert first.scheduled_time == datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)
    assert first.priority == Priority.HIGH
    assert first.status == EventStatus.PENDING
    assert first.event_data["medication_name"] == "Vitamin D"
    assert first.event_data["scheduled_time"] == "09:00"
    assert first.trigger_key == f"medication:u1:self:{record.id}:2026-03-10T09:00"
    assert _events(repo)[-1].scheduled_time == datetime(2026, 3, 17, 21, 0, tzinfo=timezone.utc)


async def test_medication_rerun_is_idempotent(scheduler, repo):
    repo.add_medication({"user_id": "u1", "medication_name": "Iron", "reminder_times": ["09:00", "21:00"]})

    await scheduler.schedule_medication_events("u1", None)
    again = await scheduler.schedule_medication_events("u1", None)

    assert again == 0
    assert len(repo.events) == 16


async def test_medication_skips_past_times(scheduler, repo):
    repo.add_medication({"user_id": "u1", "medication_name": "Iron", "reminder_times": ["07:00"]})

    assert await scheduler.schedule_medication_events("u1", None) == 7
    assert _events(repo)[0].scheduled_time.date() == (NOW + timedelta(days=1)).date()


async def test_medication_respects_start_and_end_dates(scheduler, repo):
    repo.add_medication(
        {"user_id": "u1", "medication_name": "Short course", "reminder_times": ["12:00"], "end_date": "2026-03-12"}
    )
    repo.add_medication(
        {"user_id": "u1", "medication_name": "Later course", "reminder_times": ["12:00"], "start_date": "2026-03-15"}
    )
    repo.add_medication(
        {"user_id": "u1", "medication_name": "Finished", "reminder_times": ["12:00"], "end_date": "2026-03-01"}
    )

    await scheduler.schedule_medication_events("u1", None)

    names = [e.event_data["medication_name"] for e in _events(repo)]
    assert names.count("Short course") == 3
    assert names.count("Later course") == 3
    assert "Finished" not in names


async def test_medication_is_scoped_to_member(scheduler, repo):
    repo.add_medication(
        {"user_id": "u1", "family_member_id": "kid", "medication_name": "Syrup", "reminder_times": ["18:00"]}
    )

    assert await scheduler.schedule_medication_events("u1", None) == 0
    assert await scheduler.schedule_medication_events("u1", "kid") == 8
    assert all(e.family_member_id == "kid" for e in repo.events.values())


async def test_medication_uses_engine_timezone(repo, clock):
    scheduler = EventScheduler(repo, EngineSettings(timezone="Asia/Seoul"), clock=clock)
    repo.add_medication({"user_id": "u1", "medication_name": "Iron", "reminder_times": ["09:00"]})

    # 08:00 UTC is 17:00 in Seoul, so today's 09:00 has passed
    assert await scheduler.schedule_medication_events("u1", None) == 7
    first = _events(repo)[0]
    assert first.scheduled_time == datetime(2026, 3, 11, 0, 0, tzinfo=timezone.utc)
    assert first.trigger_key.endswith(":2026-03-11T09:00")


# ----- Feeding -----


async def test_feeding_event_and_schedule_update(scheduler, repo, engine):
    repo.add_member("u1", "baby", name="Mina")
    await engine.upsert_feeding_schedule(user_id="u1", member_id="baby", interval_hours=3)
    schedule = await repo.get_feeding_schedule("u1", "baby")

    created = await scheduler.schedule_feeding_events("u1", "baby", "Mina")

    assert created == 1
    event = _events(repo, EventType.FEEDING)[0]
    assert event.priority == Priority.URGENT
    assert event.scheduled_time == NOW + timedelta(hours=3)
    assert event.event_data["baby_name"] == "Mina"
    assert event.event_data["crying_intensity"] == 80
    assert event.event_data["feeding_schedule_id"] == schedule.id
    assert (await repo.get_feeding_schedule("u1", "baby")).next_feeding_time == event.scheduled_time


async def test_feeding_rerun_does_not_duplicate(scheduler, repo, engine):
    await engine.upsert_feeding_schedule(user_id="u1", member_id="baby", interval_hours=3)

    await scheduler.schedule_feeding_events("u1", "baby")
    assert await scheduler.schedule_feeding_events("u1", "baby") == 0
    assert len(_events(repo, EventType.FEEDING)) == 1
    assert _events(repo)[0].event_data["baby_name"] == "Baby"


async def test_feeding_skips_inactive_or_missing_schedule(scheduler, engine):
    assert await scheduler.schedule_feeding_events("u1", "baby") == 0
    await engine.upsert_feeding_schedule(user_id="u1", member_id="baby", interval_hours=3)
    await engine.deactivate_feeding_schedule("u1", "baby")
    assert await scheduler.schedule_feeding_events("u1", "baby") == 0


async def test_overdue_feeding_is_rescheduled_from_now(scheduler, repo, engine, clock):
    await engine.upsert_feeding_schedule(user_id="u1", member_id="baby", interval_hours=3)
    await scheduler.schedule_feeding_events("u1", "baby")
    clock.advance(hours=5)

    assert await scheduler.schedule_feeding_events("u1", "baby") == 1
    latest = _events(repo, EventType.FEEDING)[-1]
    assert latest.scheduled_time == NOW + timedelta(hours=8)


# ----- Lifecycle -----


async def test_lifecycle_event_fields(scheduler, repo):
    notification = repo.add_notification(
        {
            "user_id": "u1",
            "title": "MMR booster",
            "scheduled_at": (NOW + timedelta(days=2)).isoformat(),
            "priority": "high",
            "category": "vaccination",
            "context_data": {"event_code": "MMR_2", "event_type": "vaccination", "has_professional_info": True},
        }
    )

    created, dropped = await scheduler.schedule_lifecycle_events("u1", None)

    assert (created, dropped) == (1, 0)
    event = _events(repo)[0]
    assert event.event_type == EventType.LIFECYCLE_MILESTONE
    assert event.priority == Priority.HIGH
    assert event.trigger_key == f"lifecycle:u1:self:{notification.id}"
    assert event.event_data["event_code"] == "MMR_2"
    assert event.event_data["event_kind"] == "vaccination"
    assert event.event_data["days_until"] == 2
    assert event.event_data["has_professional_info"] is True
    assert event.event_data["dialogue_message"] == "MMR booster is in 2 days. Time to prepare!"


async def test_lifecycle_lookback_window(scheduler, repo):
    repo.add_notification({"user_id": "u1", "title": "edge", "scheduled_at": (NOW - timedelta(days=3)).isoformat()})
    repo.add_notification(
        {"user_id": "u1", "title": "stale", "scheduled_at": (NOW - timedelta(days=3, hours=1)).isoformat()}
    )

    created, dropped = await scheduler.schedule_lifecycle_events("u1", None)

    assert (created, dropped) == (1, 1)
    assert _events(repo)[0].event_data["event_name"] == "edge"


async def test_lifecycle_priority_mapping(scheduler, repo):
    for priority in ("urgent", "low", "whatever"):
        repo.add_notification(
            {"user_id": "u1", "title": priority, "priority": priority, "scheduled_at": NOW.isoformat()}
        )

    await scheduler.schedule_lifecycle_events("u1", None)

    by_name = {e.event_data["event_name"]: e.priority for e in repo.events.values()}
    assert by_name == {"urgent": Priority.URGENT, "low": Priority.LOW, "whatever": Priority.NORMAL}


async def test_lifecycle_notification_yields_one_event_ever(scheduler, repo, engine):
    repo.add_notification({"user_id": "u1", "title": "Checkup", "scheduled_at": NOW.isoformat()})
    await scheduler.schedule_lifecycle_events("u1", None)
    event = _events(repo)[0]
    await engine.complete_event(event.id, "u1")

    created, _ = await scheduler.schedule_lifecycle_events("u1", None)

    assert created == 0
    assert len(repo.events) == 1


def test_lifecycle_dialogue():
    assert lifecycle_dialogue("Checkup", -1) == "Checkup has passed. Please check on it!"
    assert lifecycle_dialogue("Checkup", 0) == "Checkup is today!"
    assert lifecycle_dialogue("Checkup", 7) == "Checkup is in 7 days. Time to prepare!"
    assert lifecycle_dialogue("Checkup", 30) == "30 days left until Checkup."
    assert lifecycle_dialogue("Checkup", None, "Custom text") == "Custom text"
    assert lifecycle_dialogue("Checkup", None) == "You have a Checkup notification!"


async def test_stated_zero_days_is_today(scheduler, repo):
    repo.add_notification(
        {
            "user_id": "u1",
            "title": "Dental",
            "scheduled_at": (NOW + timedelta(days=4)).isoformat(),
            "context_data": {"days_until": 0},
        }
    )
    await scheduler.schedule_lifecycle_events("u1", None)
    data = _events(repo)[0].event_data
    assert data["days_until"] == 0
    assert data["dialogue_message"] == "Dental is today!"


# ----- Per-user orchestration -----


class RecordingRepository(InMemoryEngineRepository):
    def __init__(self, failing_member=None):
        super().__init__()
        self.calls = []
        self.failing_member = failing_member

    async def list_medication_records(self, user_id, member_id, today):
        self.calls.append(("medication", member_id))
        if member_id is not None and member_id == self.failing_member:
            raise RuntimeError("medication source unavailable")
        return await super().list_medication_records(user_id, member_id, today)

    async def get_feeding_schedule(self, user_id, member_id):
        self.calls.append(("feeding", member_id))
        return await super().get_feeding_schedule(user_id, member_id)

    async def list_lifecycle_notifications(self, user_id, member_id, limit):
        self.calls.append(("lifecycle", member_id))
        return await super().list_lifecycle_notifications(user_id, member_id, limit)


async def test_units_run_in_order(settings, clock):
    repo = RecordingRepository()
    repo.add_member("u1", "kid", "Jun")
    engine = GameEngine(repo, settings, clock=clock)
    await engine.upsert_feeding_schedule(user_id="u1", member_id="kid", interval_hours=3)
    repo.calls.clear()

    await engine.schedule_events_for_user("u1")

    assert repo.calls == [
        ("medication", None),
        ("medication", "kid"),
        ("feeding", "kid"),
        ("lifecycle", None),
        ("lifecycle", "kid"),
    ]


async def test_failing_unit_is_isolated(settings, clock):
    repo = RecordingRepository(failing_member="kid")
    repo.add_member("u1", "kid")
    repo.add_medication({"user_id": "u1", "medication_name": "Iron", "reminder_times": ["12:00"]})
    repo.add_medication({"user_id": "u1", "family_member_id": "kid", "medication_name": "Syrup", "reminder_times": ["12:00"]})
    repo.add_notification({"user_id": "u1", "family_member_id": "kid", "title": "Growth check", "scheduled_at": NOW.isoformat()})
    scheduler = EventScheduler(repo, settings, clock=clock)

    counts = await scheduler.schedule_events_for_user("u1")

    assert counts.failed_units == 1
    assert counts.medication == 8
    assert counts.lifecycle == 1
    assert counts.total == 9


class DoubleInsertRepository(InMemoryEngineRepository):
    """Open-event lookup always misses, as if a concurrent run inserted in between."""

    async def find_open_event(self, user_id, trigger_key):
        return None


async def test_store_uniqueness_is_the_last_guard(settings, clock):
    repo = DoubleInsertRepository()
    repo.add_medication({"user_id": "u1", "medication_name": "Iron", "reminder_times": ["12:00"]})
    scheduler = EventScheduler(repo, settings, clock=clock)

    await scheduler.schedule_medication_events("u1", None)
    assert await scheduler.schedule_medication_events("u1", None) == 0
    assert len(repo.events) == 8


# ----- Batch -----


class FailingUserRepository(InMemoryEngineRepository):
    async def list_family_members(self, user_id):
        if user_id == "broken":
            raise RuntimeError("boom")
        return await super().list_family_members(user_id)


async def test_batch_skips_failing_user_and_inactive_users(settings):
    clock = FixedClock()
    repo = FailingUserRepository()
    repo.add_user("u1", NOW - timedelta(days=2))
    repo.add_user("broken", NOW - timedelta(days=1))
    repo.add_user("old", NOW - timedelta(days=45))
    repo.add_medication({"user_id": "u1", "medication_name": "Iron", "reminder_times": ["12:00"]})
    repo.add_medication({"user_id": "old", "medication_name": "Iron", "reminder_times": ["12:00"]})
    scheduler = EventScheduler(repo, settings, clock=clock)

    result = await scheduler.schedule_all_users()

    assert result.processed_users == 1
    assert result.failed_users == 1
    assert result.failed_user_ids == ["broken"]
    assert result.events_created == 8
    assert all(e.user_id == "u1" for e in repo.events.values())


async def test_batch_respects_page_size(clock):
    repo = InMemoryEngineRepository()
    for i in range(5):
        repo.add_user(f"u{i}", NOW - timedelta(hours=i + 1))
    scheduler = EventScheduler(repo, EngineSettings(batch_size=3), clock=clock)

    result = await scheduler.schedule_all_users()

    assert result.processed_users == 3


async def test_rerun_over_all_sources_creates_nothing(engine, repo):
    repo.add_member("u1", "baby", "Mina")
    repo.add_medication({"user_id": "u1", "medication_name": "Iron", "reminder_times": ["09:00", "21:00"]})
    repo.add_medication(
        {"user_id": "u1", "family_member_id": "baby", "medication_name": "Vitamin D", "reminder_times": ["10:00"]}
    )
    repo.add_notification(
        {
            "user_id": "u1",
            "family_member_id": "baby",
            "title": "4-month checkup",
            "scheduled_at": (NOW + timedelta(days=5)).isoformat(),
        }
    )
    await engine.upsert_feeding_schedule(user_id="u1", member_id="baby", interval_hours=3)

    first = await engine.schedule_events_for_user("u1")
    assert (first.medication, first.feeding, first.lifecycle) == (24, 1, 1)

    second = await engine.schedule_events_for_user("u1")
    assert second.total == 0
    assert len(repo.events) == first.total
