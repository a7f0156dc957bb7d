"""
Calendar-Day Streaks

A streak is the number of consecutive UTC calendar days with at least one
activity record, counted backward from the most recent active day. The run
does not need to reach today: a user whose last check-in was yesterday still
has the streak that ended yesterday.
"""

from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Set

from models import as_utc


def activity_days(timestamps: Iterable[Optional[datetime]]) -> Set[date]:
    return {as_utc(ts).date() for ts in timestamps if ts is not None}


def current_streak(timestamps: Iterable[Optional[datetime]]) -> int:
    """Length of the run of consecutive days ending at the most recent active day."""
    days = activity_days(timestamps)
    if not days:
        return 0

    streak = 0
    day = max(days)
    while day in days:
        streak += 1
        day -= timedelta(days=1)
    return streak


def longest_streak(timestamps: Iterable[Optional[datetime]]) -> int:
    days = sorted(activity_days(timestamps))
    longest = 0
    run = 0
    previous: Optional[date] = None
    for day in days:
        run = run + 1 if previous is not None and day - previous == timedelta(days=1) else 1
        longest = max(longest, run)
        previous = day
    return longest
