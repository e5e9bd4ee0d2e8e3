"""
Schedule controller: decide whether an automatic run is due and where the schedule moves next.

All timestamps are UTC; ``time_of_day`` is read in UTC as well.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from .models import Schedule

WORD_COUNTS: dict[str, str] = {
    "short": "800-1000",
    "standard": "1200-1500",
    "long": "2000-2500",
}
DEFAULT_TARGET_LENGTH = "standard"

_INTERVALS: dict[str, timedelta] = {
    "daily": timedelta(days=1),
    # Weekly repeats every 7 days from the previous run; day_of_week is not re-aligned.
    "weekly": timedelta(days=7),
}


@dataclass(frozen=True)
class ScheduleAdvance:
    last_run_at: datetime
    next_run_at: datetime


def target_words(target_length: Optional[str]) -> str:
    """Return the word-count range for a target length, defaulting to standard."""
    return WORD_COUNTS.get(target_length or "", WORD_COUNTS[DEFAULT_TARGET_LENGTH])


def _utc(now: datetime) -> datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def is_due(schedule: Optional[Schedule], now: datetime, force: bool = False) -> bool:
    """
    Return True when a run should happen now.

    Forced runs are always due. Otherwise the schedule must exist, be active,
    and either have no next run recorded or have reached it.
    """
    if force:
        return True
    if schedule is None or not schedule.active:
        return False
    if schedule.next_run_at is None:
        return True
    return _utc(now) >= schedule.next_run_at


def advance(schedule: Schedule, now: datetime) -> ScheduleAdvance:
    """Compute the bookkeeping written after a successful run at ``now``."""
    current = _utc(now)
    hours, minutes = schedule.hour_minute
    next_run = (current + _INTERVALS[schedule.frequency]).replace(
        hour=hours, minute=minutes, second=0, microsecond=0
    )
    return ScheduleAdvance(last_run_at=current, next_run_at=next_run)


def describe(schedule: Optional[Schedule], now: datetime) -> dict:
    """Summarize schedule state for the CLI and logs."""
    if schedule is None:
        return {"schedule": None, "due": False}
    return {
        "schedule": schedule.to_wire(),
        "due": is_due(schedule, now),
        "targetWords": target_words(schedule.target_length),
    }
