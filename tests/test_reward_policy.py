import pytest

from healthgame.services.events.event_types import EventType, Priority
from healthgame.services.game_engine import GameEngine
from healthgame.services.rewards.reward_policy import RewardPolicy
from healthgame.settings import EngineSettings


@pytest.mark.parametrize(
    "event_type, priority, points",
    [
        (EventType.MEDICATION, Priority.URGENT, 100),
        (EventType.MEDICATION, Priority.NORMAL, 50),
        (EventType.FEEDING, Priority.LOW, 15),
        (EventType.LIFECYCLE_MILESTONE, Priority.HIGH, 90),
        (EventType.HEALTH_CHECKUP, Priority.NORMAL, 100),
        (EventType.VACCINATION, Priority.URGENT, 160),
        (EventType.CUSTOM, Priority.NORMAL, 40),
    ],
)
def test_default_table(event_type, priority, points):
    policy = RewardPolicy()
    assert policy.reward_for(event_type, priority) == (points, points * 10)


def test_points_are_floored():
    policy = RewardPolicy.from_dict({"base_points": {"custom": 45}})
    assert policy.points_for(EventType.CUSTOM, Priority.LOW) == 22
    assert policy.points_for(EventType.CUSTOM, Priority.HIGH) == 67


def test_partial_override_merges_with_defaults():
    policy = RewardPolicy.from_dict({"priority_multipliers": {"urgent": 3}, "experience_per_point": 2})

    assert policy.version == "custom"
    assert policy.reward_for(EventType.MEDICATION, Priority.URGENT) == (150, 300)
    assert policy.points_for(EventType.FEEDING, Priority.NORMAL) == 30


def test_empty_override_is_default():
    assert RewardPolicy.from_dict(None).to_dict() == RewardPolicy().to_dict()


@pytest.mark.parametrize(
    "data",
    [
        {"base_points": {"bungee": 10}},
        {"base_points": {"feeding": 0}},
        {"priority_multipliers": {"normal": -1}},
        {"priority_multipliers": {"meh": 1}},
        {"experience_per_point": 0},
        {"base_points": {"feeding": 1}},
        {"priority_multipliers": {"low": 0.01}},
    ],
)
def test_invalid_policy_rejected(data):
    with pytest.raises(ValueError):
        RewardPolicy.from_dict(data)


def test_engine_reads_policy_from_settings(repo):
    settings = EngineSettings(reward_policy={"base_points": {"medication": 70}})
    engine = GameEngine(repo, settings)
    assert engine.policy.points_for(EventType.MEDICATION, Priority.NORMAL) == 70
