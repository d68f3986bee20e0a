"""Wall-clock interval arithmetic on "HH:MM" strings.

Every function here is total: malformed input degrades to zero contribution
(or passes through unchanged for formatting helpers) instead of raising.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from typing import Any, Iterable, List, Optional

logger = logging.getLogger(__name__)

INVALID_MINUTES = -1
MINUTES_PER_DAY = 24 * 60

_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


def to_minutes(value: Any) -> int:
    """Convert "HH:MM" to minutes after midnight, or ``INVALID_MINUTES``."""
    if not isinstance(value, str):
        return INVALID_MINUTES
    match = _TIME_RE.match(value)
    if not match:
        return INVALID_MINUTES
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return INVALID_MINUTES
    return hours * 60 + minutes


def is_valid_time(value: Any) -> bool:
    return to_minutes(value) != INVALID_MINUTES


def duration(start: Any, end: Any, now_minutes: Optional[int] = None) -> int:
    """Minutes between ``start`` and ``end``, clamped to zero.

    An open interval (empty ``end``) counts up to ``now_minutes`` in live mode
    and contributes nothing otherwise.
    """
    start_min = to_minutes(start)
    if start_min == INVALID_MINUTES:
        return 0
    if end:
        end_min = to_minutes(end)
        if end_min == INVALID_MINUTES:
            return 0
        return max(0, end_min - start_min)
    if now_minutes is None:
        return 0
    return max(0, int(now_minutes) - start_min)


def _field(interval: Any, name: str) -> Any:
    if isinstance(interval, dict):
        return interval.get(name)
    return getattr(interval, name, None)


def interval_duration(interval: Any, now_minutes: Optional[int] = None) -> int:
    return duration(_field(interval, "start"), _field(interval, "end"), now_minutes)


def sum_durations(intervals: Optional[Iterable[Any]], now_minutes: Optional[int] = None) -> int:
    if not intervals:
        return 0
    return sum(interval_duration(interval, now_minutes) for interval in intervals)


def is_open(interval: Any) -> bool:
    return bool(_field(interval, "start")) and not _field(interval, "end")


def inverted_intervals(intervals: Optional[Iterable[Any]]) -> List[Any]:
    """Closed intervals whose end is not after their start.

    These are clamped to zero by :func:`duration`; callers can surface them as
    a non-fatal warning.
    """
    flagged: List[Any] = []
    for interval in intervals or []:
        start_min = to_minutes(_field(interval, "start"))
        end_min = to_minutes(_field(interval, "end"))
        if INVALID_MINUTES in (start_min, end_min):
            continue
        if end_min <= start_min:
            flagged.append(interval)
    return flagged


def round_to_five(value: Optional[str]) -> Optional[str]:
    match = _TIME_RE.match(value) if isinstance(value, str) else None
    if not match:
        return value
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return value
    minutes = round(minutes / 5) * 5
    if minutes == 60:
        minutes = 0
        hours = (hours + 1) % 24
    return f"{hours:02d}:{minutes:02d}"


def current_minutes(moment: dt.datetime) -> int:
    return moment.hour * 60 + moment.minute


def current_time_string(moment: dt.datetime, round_five: bool = False) -> str:
    text = f"{moment.hour:02d}:{moment.minute:02d}"
    return round_to_five(text) if round_five else text


def format_minutes(minutes: float) -> str:
    total = max(0, int(minutes))
    return f"{total // 60}h {total % 60}m"


def format_clock(minutes: Optional[float]) -> Optional[str]:
    if minutes is None:
        return None
    total = int(round(minutes)) % MINUTES_PER_DAY
    return f"{total // 60:02d}:{total % 60:02d}"


def hours_from_minutes(minutes: float) -> float:
    return round(minutes / 60, 2)
