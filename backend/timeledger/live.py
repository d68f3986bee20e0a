from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Union

from .intervals import current_minutes, format_minutes, inverted_intervals
from .schemas import DayEntry
from .stats import day_totals
from .tracking import has_open_intervals
from .utils import date_key

if TYPE_CHECKING:
    from .services import Ledger

logger = logging.getLogger(__name__)


@dataclass
class LiveDaySummary:
    date: str
    as_of: str
    running: bool = False
    work_minutes: int = 0
    attendance_minutes: int = 0
    office_minutes: int = 0
    home_minutes: int = 0
    break_minutes: int = 0
    lunch_minutes: int = 0
    hours_worked: str = "0h 0m"
    hours_present: str = "0h 0m"
    project_minutes: Dict[str, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


def interval_warnings(entry: DayEntry) -> List[str]:
    """Closed intervals of the day that end at or before their start and count as zero."""
    groups = [("Attendance", entry.attendance), ("Break", entry.breaks)]
    groups.extend(("Work session", item.work_sessions) for item in entry.projects)
    return [
        f"{kind} {interval.start}-{interval.end} has no duration"
        for kind, intervals in groups
        for interval in inverted_intervals(intervals)
    ]


def live_day_summary(entry: Optional[DayEntry], date: Union[dt.date, str], now: dt.datetime) -> LiveDaySummary:
    """Totals for one day; open intervals only run when ``date`` is today."""
    key = date_key(date)
    as_of = f"{now.hour:02d}:{now.minute:02d}"
    if entry is None:
        return LiveDaySummary(date=key, as_of=as_of)
    is_today = key == now.date().isoformat()
    totals = day_totals(entry, current_minutes(now) if is_today else None)
    return LiveDaySummary(
        date=key,
        as_of=as_of,
        running=is_today and has_open_intervals(entry),
        work_minutes=totals.work_minutes,
        attendance_minutes=totals.attendance_minutes,
        office_minutes=totals.office_minutes,
        home_minutes=totals.home_minutes,
        break_minutes=totals.break_minutes,
        lunch_minutes=totals.lunch_minutes,
        hours_worked=format_minutes(totals.work_minutes),
        hours_present=format_minutes(totals.attendance_minutes),
        project_minutes=dict(totals.project_minutes),
        warnings=interval_warnings(entry),
    )


class LiveTicker:
    """Background refresh of today's running totals and debounced undo steps."""

    def __init__(self, ledger: "Ledger", interval: Optional[float] = None) -> None:
        self.ledger = ledger
        self.interval = interval if interval is not None else ledger.config.live_refresh_seconds

    def tick(self) -> Optional[LiveDaySummary]:
        if self.ledger.poll_history():
            logger.debug("Committed pending undo step")
        return self.ledger.refresh_live()

    async def run(self) -> None:
        while True:
            try:
                await asyncio.to_thread(self.tick)
            except Exception:
                logger.exception("Live refresh failed")
            await asyncio.sleep(self.interval)
