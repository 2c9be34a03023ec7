"""
Character Status Deriver
========================

Maps a bundle of health signals to the single emotional state the character
displays.

Contract:
- STATUS_RULES is an ordered list. Every rule whose guard holds becomes a
  candidate with a 0-100 score. The highest score wins; on equal scores the
  rule declared FIRST wins. Reordering STATUS_RULES changes results.
- No candidate -> neutral, intensity 50.
- Intensity is the winning score rounded half-up; the display message is
  picked from the unrounded score.

Pure: no DB, no clock reads. `now` must already be in the user's timezone
(meal windows are wall-clock hours).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

NEUTRAL_STATE = "neutral"
NEUTRAL_SCORE = 50.0

# meal -> (window start hour, window end hour)
MEAL_WINDOWS: Dict[str, Tuple[int, int]] = {
    "breakfast": (6, 10),
    "lunch": (11, 15),
    "dinner": (17, 21),
}

MIN_MEAL_CALORIES = 200
SHORT_SLEEP_HOURS = 6
OVERACTIVE_STEPS = 15000


@dataclass(frozen=True)
class HealthSignals:
    health_score: float = 0
    health_status: str = "good"
    has_disease: bool = False
    # calories per meal eaten today; a missing key means the meal was skipped
    meals: Dict[str, Optional[float]] = field(default_factory=dict)
    daily_calorie_goal: Optional[float] = None
    current_calories: Optional[float] = None
    # None means no sleep record at all
    sleep_minutes: Optional[float] = None
    steps: Optional[int] = None
    missed_medications: int = 0
    urgent_reminders: int = 0
    health_score_delta: Optional[float] = None
    has_positive_notifications: bool = False

    @property
    def sleep_hours(self) -> Optional[float]:
        if self.sleep_minutes is None:
            return None
        return self.sleep_minutes / 60

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "HealthSignals":
        known = HealthSignals.__dataclass_fields__.keys()
        return HealthSignals(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class DerivedStatus:
    state: str
    intensity: int
    message: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "intensity": self.intensity,
            "message": self.message,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class StatusRule:
    state: str
    guard: Callable[[HealthSignals, datetime], bool]
    score: Callable[[HealthSignals, datetime], float]
    reason: Callable[[HealthSignals, datetime], str]


# ----- Meal helpers -----


def last_closed_meal(now: datetime) -> Optional[str]:
    """The most recent meal whose window has already ended today."""
    closed = [meal for meal, (_, end) in MEAL_WINDOWS.items() if now.hour >= end]
    return closed[-1] if closed else None


def _calorie_deficit(s: HealthSignals) -> bool:
    if not s.daily_calorie_goal or not s.current_calories:
        return False
    return s.current_calories < s.daily_calorie_goal * 0.5


def _calorie_ratio(s: HealthSignals) -> float:
    if not s.daily_calorie_goal or not s.current_calories:
        return 0.0
    return s.current_calories / s.daily_calorie_goal


def _skipped_meal(s: HealthSignals, now: datetime) -> bool:
    meal = last_closed_meal(now)
    if meal is None:
        return False
    calories = s.meals.get(meal)
    return calories is None or calories < MIN_MEAL_CALORIES


def _delta(s: HealthSignals) -> float:
    return s.health_score_delta or 0.0


# ----- Rules (declaration order is the tie-break order) -----

STATUS_RULES: Tuple[StatusRule, ...] = (
    StatusRule(
        "angry",
        guard=lambda s, now: s.missed_medications > 0 and _delta(s) < -5,
        score=lambda s, now: min(100, 50 + s.missed_medications * 15 + abs(_delta(s)) * 2),
        reason=lambda s, now: (
            f"Skipped {s.missed_medications} medication(s) and the health score fell {abs(_delta(s)):g} points."
        ),
    ),
    StatusRule(
        "sick",
        guard=lambda s, now: s.has_disease and s.health_status == "needs_attention",
        score=lambda s, now: min(100, 60 + (100 - s.health_score) * 0.4),
        reason=lambda s, now: "An ongoing condition needs attention.",
    ),
    StatusRule(
        "worried",
        guard=lambda s, now: s.urgent_reminders > 0 and s.health_score < 60,
        score=lambda s, now: min(100, 40 + s.urgent_reminders * 10 + (60 - s.health_score) * 0.5),
        reason=lambda s, now: f"{s.urgent_reminders} urgent reminder(s) with a low health score.",
    ),
    StatusRule(
        "tired",
        guard=lambda s, now: s.sleep_hours is not None and s.sleep_hours < SHORT_SLEEP_HOURS,
        score=lambda s, now: min(
            100,
            50 + (SHORT_SLEEP_HOURS - s.sleep_hours) * 10 + (20 if (s.steps or 0) > OVERACTIVE_STEPS else 0),
        ),
        reason=lambda s, now: f"Only {s.sleep_hours:.1f} hours of sleep.",
    ),
    StatusRule(
        "hungry",
        guard=_skipped_meal,
        score=lambda s, now: 80 if _calorie_deficit(s) else 60,
        reason=lambda s, now: f"{(last_closed_meal(now) or 'meal').capitalize()} time has passed.",
    ),
    StatusRule(
        "full",
        guard=lambda s, now: _calorie_ratio(s) > 1.2,
        score=lambda s, now: min(100, 50 + (_calorie_ratio(s) - 1.2) * 100),
        reason=lambda s, now: "Calorie intake is well over the daily goal.",
    ),
    StatusRule(
        "sad",
        guard=lambda s, now: s.health_score < 40 and _delta(s) < -3,
        score=lambda s, now: min(100, 50 + (40 - s.health_score) * 0.5 + abs(_delta(s)) * 5),
        reason=lambda s, now: f"The health score is {s.health_score:g} and still falling.",
    ),
    StatusRule(
        "excited",
        guard=lambda s, now: s.has_positive_notifications and _delta(s) > 3,
        score=lambda s, now: min(100, 60 + _delta(s) * 5),
        reason=lambda s, now: f"The health score rose {_delta(s):g} points!",
    ),
    StatusRule(
        "happy",
        guard=lambda s, now: s.health_score >= 80 and _delta(s) >= 0,
        score=lambda s, now: min(100, 60 + (s.health_score - 80) * 0.5),
        reason=lambda s, now: f"The health score is a healthy {s.health_score:g}!",
    ),
)

STATUS_MESSAGES: Dict[str, Tuple[str, str, str]] = {
    "happy": ("Feeling healthy today!", "Another healthy day!", "In a great mood!"),
    "sad": ("Worried about my health...", "Things look a little hard.", "Let's take better care of ourselves."),
    "sick": ("I don't feel well...", "Maybe it's time to see a doctor.", "My health is a concern."),
    "tired": ("So tired...", "I need a proper rest.", "I should get more sleep."),
    "hungry": ("I'm hungry...", "It's meal time!", "I need some nutrition."),
    "full": ("So full!", "That was plenty to eat.", "It'll be a while until the next meal."),
    "excited": ("My health is improving!", "Great news!", "Feeling good!"),
    "worried": ("I'm worried about my health...", "Something needs attention.", "Please check on my care plan."),
    "angry": ("You skipped my medicine!", "Don't neglect my care.", "Don't forget the medication!"),
    "neutral": ("Feeling steady.", "A calm day so far.", "Nothing new to report."),
}


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def status_message(state: str, score: float) -> str:
    messages = STATUS_MESSAGES.get(state, STATUS_MESSAGES[NEUTRAL_STATE])
    return messages[int(score // 34) % len(messages)]


def score_candidates(
    signals: HealthSignals,
    now: datetime,
    rules: Sequence[StatusRule] = STATUS_RULES,
) -> List[Tuple[StatusRule, float]]:
    return [(rule, float(rule.score(signals, now))) for rule in rules if rule.guard(signals, now)]


def derive_status(
    signals: HealthSignals,
    now: datetime,
    rules: Sequence[StatusRule] = STATUS_RULES,
) -> DerivedStatus:
    winner: Optional[Tuple[StatusRule, float]] = None
    for candidate in score_candidates(signals, now, rules):
        # strictly greater keeps the earlier rule on a tie
        if winner is None or candidate[1] > winner[1]:
            winner = candidate

    if winner is None:
        return DerivedStatus(
            state=NEUTRAL_STATE,
            intensity=round_half_up(NEUTRAL_SCORE),
            message=status_message(NEUTRAL_STATE, NEUTRAL_SCORE),
            reason="Health is stable.",
        )

    rule, score = winner
    return DerivedStatus(
        state=rule.state,
        intensity=round_half_up(score),
        message=status_message(rule.state, score),
        reason=rule.reason(signals, now),
    )
