"""
Feeding Interval Calculator
===========================

Purpose:
- Decide when the next feeding prompt becomes due.
- Pure function: no DB, no clock access ("now" is passed in).

Rules (in order):
1) A stored next-feeding time that is still in the future is kept as-is.
2) Otherwise, last feeding + interval; if that is already past, now + interval
   (an overdue schedule never compounds into a backlog).
3) First-ever schedule: now + interval.

Intervals may be fractional: 2.5h is applied as 2 hours 30 minutes. Seconds
and microseconds of the result are truncated.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Optional

from healthgame.errors import InvalidInputError


def interval_delta(interval_hours: float) -> timedelta:
    hours = float(interval_hours)
    if not math.isfinite(hours) or hours <= 0:
        raise InvalidInputError("feeding_interval_hours must be > 0")
    whole = math.floor(hours)
    minutes = math.floor((hours - whole) * 60)
    return timedelta(hours=whole, minutes=minutes)


def _add_interval(start: datetime, interval_hours: float) -> datetime:
    return (start + interval_delta(interval_hours)).replace(second=0, microsecond=0)


def next_feeding_time(
    last_feeding_time: Optional[datetime],
    current_next_feeding_time: Optional[datetime],
    interval_hours: float,
    now: datetime,
) -> datetime:
    # a bad interval is rejected even when the stored time would be kept
    interval_delta(interval_hours)

    if current_next_feeding_time is not None and current_next_feeding_time > now:
        return current_next_feeding_time

    if last_feeding_time is not None:
        candidate = _add_interval(last_feeding_time, interval_hours)
        if candidate <= now:
            return _add_interval(now, interval_hours)
        return candidate

    return _add_interval(now, interval_hours)
