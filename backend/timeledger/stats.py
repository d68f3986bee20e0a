"""Statistics derived from the ledger.

Everything here is a pure function of (entries, projects, today, now). Open
intervals are only measured against ``now_minutes`` for the entry dated
``today``; any other open interval contributes nothing. Malformed stored
values contribute zero, so none of these functions raise on ledger data.
"""

from __future__ import annotations

import datetime as dt
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from typing_extensions import Literal

from .intervals import INVALID_MINUTES, duration, hours_from_minutes, sum_durations, to_minutes
from .schemas import DayEntry, Project
from .utils import WEEKDAY_LABELS, WEEKDAY_NAMES, iter_days, month_bounds, parse_date, week_start

Period = Literal["day", "week", "month", "all"]

STREAK_LOOKBACK_DAYS = 365
DAILY_SERIES_DAYS = 30
SHORT_WEEK = ("Mon", "Tue", "Wed")
FULL_WEEK = ("Mon", "Tue", "Wed", "Thu", "Fri")


@dataclass
class DayTotals:
    date: str
    work_minutes: int = 0
    attendance_minutes: int = 0
    office_minutes: int = 0
    home_minutes: int = 0
    break_minutes: int = 0
    lunch_minutes: int = 0
    sessions: int = 0
    project_minutes: Dict[str, int] = field(default_factory=dict)

    @property
    def worked(self) -> bool:
        return self.work_minutes > 0 or self.office_minutes > 0 or self.home_minutes > 0

    def add(self, other: "DayTotals") -> None:
        self.work_minutes += other.work_minutes
        self.attendance_minutes += other.attendance_minutes
        self.office_minutes += other.office_minutes
        self.home_minutes += other.home_minutes
        self.break_minutes += other.break_minutes
        self.lunch_minutes += other.lunch_minutes
        self.sessions += other.sessions
        for project_id, minutes in other.project_minutes.items():
            self.project_minutes[project_id] = self.project_minutes.get(project_id, 0) + minutes


def day_totals(entry: DayEntry, now_minutes: Optional[int] = None) -> DayTotals:
    """Aggregate one day entry; pass ``now_minutes`` only for today's entry."""
    totals = DayTotals(date=entry.date)
    for item in entry.projects:
        minutes = sum_durations(item.work_sessions, now_minutes)
        totals.work_minutes += minutes
        totals.sessions += sum(1 for session in item.work_sessions if session.start and session.end)
        if minutes > 0 and item.project_id:
            totals.project_minutes[item.project_id] = totals.project_minutes.get(item.project_id, 0) + minutes

    totals.break_minutes = sum_durations(entry.breaks, now_minutes)
    totals.lunch_minutes = duration(entry.lunch_start, entry.lunch_end, now_minutes)

    if entry.attendance:
        for period in entry.attendance:
            minutes = duration(period.start, period.end, now_minutes)
            if period.location == "home":
                totals.home_minutes += minutes
            else:
                totals.office_minutes += minutes
        present = totals.office_minutes + totals.home_minutes
        totals.attendance_minutes = max(0, present - totals.break_minutes)
    elif entry.clock_in:
        present = duration(entry.clock_in, entry.clock_out, now_minutes)
        legacy = max(0, present - totals.break_minutes) if present > 0 else 0
        totals.office_minutes = legacy
        totals.attendance_minutes = legacy
    return totals


def _live_minutes(entry: DayEntry, today: dt.date, now_minutes: Optional[int]) -> Optional[int]:
    return now_minutes if now_minutes is not None and entry.date == today.isoformat() else None


def totals_by_date(
    entries: Iterable[DayEntry], today: dt.date, now_minutes: Optional[int] = None
) -> Dict[str, DayTotals]:
    result: Dict[str, DayTotals] = {}
    for entry in entries:
        if parse_date(entry.date) is None:
            continue
        totals = day_totals(entry, _live_minutes(entry, today, now_minutes))
        if entry.date in result:
            result[entry.date].add(totals)
        else:
            result[entry.date] = totals
    return result


def period_bounds(period: Period, reference: dt.date) -> Tuple[Optional[dt.date], Optional[dt.date]]:
    if period == "day":
        return reference, reference
    if period == "week":
        start = week_start(reference)
        return start, start + dt.timedelta(days=6)
    if period == "month":
        return month_bounds(reference)
    return None, None


@dataclass
class RangeSummary:
    start: Optional[str]
    end: Optional[str]
    work_minutes: int = 0
    attendance_minutes: int = 0
    office_minutes: int = 0
    home_minutes: int = 0
    break_minutes: int = 0
    lunch_minutes: int = 0
    days_worked: int = 0
    sessions: int = 0
    project_minutes: Dict[str, int] = field(default_factory=dict)

    @property
    def average_work_minutes(self) -> float:
        return self.work_minutes / self.days_worked if self.days_worked else 0.0


def summarize_range(
    daily: Dict[str, DayTotals],
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
) -> RangeSummary:
    summary = RangeSummary(
        start=start.isoformat() if start else None,
        end=end.isoformat() if end else None,
    )
    start_key = start.isoformat() if start else None
    end_key = end.isoformat() if end else None
    for date, totals in daily.items():
        if start_key and date < start_key:
            continue
        if end_key and date > end_key:
            continue
        summary.work_minutes += totals.work_minutes
        summary.attendance_minutes += totals.attendance_minutes
        summary.office_minutes += totals.office_minutes
        summary.home_minutes += totals.home_minutes
        summary.break_minutes += totals.break_minutes
        summary.lunch_minutes += totals.lunch_minutes
        summary.sessions += totals.sessions
        if totals.worked:
            summary.days_worked += 1
        for project_id, minutes in totals.project_minutes.items():
            summary.project_minutes[project_id] = summary.project_minutes.get(project_id, 0) + minutes
    return summary


@dataclass
class WeekdayAverage:
    day: str
    average_minutes: float
    total_minutes: int
    days: int


def weekday_averages(daily: Dict[str, DayTotals]) -> List[WeekdayAverage]:
    totals = [0] * 7
    counts = [0] * 7
    for date, day in daily.items():
        parsed = parse_date(date)
        if parsed is None or day.work_minutes <= 0:
            continue
        totals[parsed.weekday()] += day.work_minutes
        counts[parsed.weekday()] += 1
    return [
        WeekdayAverage(
            day=WEEKDAY_LABELS[index],
            average_minutes=totals[index] / counts[index] if counts[index] else 0.0,
            total_minutes=totals[index],
            days=counts[index],
        )
        for index in range(7)
    ]


def worked_dates(daily: Dict[str, DayTotals]) -> Set[str]:
    return {date for date, totals in daily.items() if totals.worked}


def current_streak(worked: Set[str], today: dt.date, lookback: int = STREAK_LOOKBACK_DAYS) -> int:
    """Consecutive worked days walking back from ``today``.

    An unworked ``today`` does not end the walk; the first gap before it does.
    """
    streak = 0
    for offset in range(lookback + 1):
        day = (today - dt.timedelta(days=offset)).isoformat()
        if day in worked:
            streak += 1
        elif offset > 0:
            break
    return streak


def longest_streak(worked: Set[str]) -> int:
    longest = 0
    run = 0
    previous: Optional[dt.date] = None
    for date in sorted(worked):
        day = parse_date(date)
        if day is None:
            continue
        run = run + 1 if previous is not None and day - previous == dt.timedelta(days=1) else 1
        longest = max(longest, run)
        previous = day
    return longest


@dataclass
class HeatmapCell:
    date: str
    weekday: int
    week: int
    minutes: int
    hours: float


def heatmap(daily: Dict[str, DayTotals], today: dt.date, days: int = 112) -> List[HeatmapCell]:
    """Trailing window ending today; rows are weekdays (Monday = 0), columns weeks."""
    start = today - dt.timedelta(days=max(1, days) - 1)
    offset = start.weekday()
    cells: List[HeatmapCell] = []
    for index, day in enumerate(iter_days(start, today)):
        totals = daily.get(day.isoformat())
        minutes = totals.work_minutes if totals else 0
        cells.append(
            HeatmapCell(
                date=day.isoformat(),
                weekday=day.weekday(),
                week=(index + offset) // 7,
                minutes=minutes,
                hours=hours_from_minutes(minutes),
            )
        )
    return cells


@dataclass
class DailyPoint:
    date: str
    day: str
    work_minutes: int
    office_minutes: int
    home_minutes: int


def daily_series(daily: Dict[str, DayTotals], today: dt.date, days: int = DAILY_SERIES_DAYS) -> List[DailyPoint]:
    start = today - dt.timedelta(days=days - 1)
    points = []
    for day in iter_days(start, today):
        totals = daily.get(day.isoformat()) or DayTotals(date=day.isoformat())
        points.append(
            DailyPoint(
                date=totals.date,
                day=WEEKDAY_LABELS[day.weekday()],
                work_minutes=totals.work_minutes,
                office_minutes=totals.office_minutes,
                home_minutes=totals.home_minutes,
            )
        )
    return points


@dataclass
class ClockAverages:
    clock_in: Optional[float]
    clock_out: Optional[float]
    days: int


def _day_clock_bounds(entry: DayEntry) -> Tuple[Optional[int], Optional[int]]:
    if entry.attendance:
        starts = [to_minutes(period.start) for period in entry.attendance]
        ends = [to_minutes(period.end) for period in entry.attendance]
    else:
        starts = [to_minutes(entry.clock_in)]
        ends = [to_minutes(entry.clock_out)]
    starts = [value for value in starts if value != INVALID_MINUTES]
    ends = [value for value in ends if value != INVALID_MINUTES]
    return (min(starts) if starts else None, max(ends) if ends else None)


def clock_averages(entries: Iterable[DayEntry]) -> ClockAverages:
    """Mean earliest start and latest end over days with attendance."""
    starts: List[int] = []
    ends: List[int] = []
    days = 0
    for entry in entries:
        first, last = _day_clock_bounds(entry)
        if first is None and last is None:
            continue
        days += 1
        if first is not None:
            starts.append(first)
        if last is not None:
            ends.append(last)
    return ClockAverages(
        clock_in=sum(starts) / len(starts) if starts else None,
        clock_out=sum(ends) / len(ends) if ends else None,
        days=days,
    )


def best_day(daily: Dict[str, DayTotals]) -> Optional[Tuple[str, int]]:
    best: Optional[Tuple[str, int]] = None
    for date in sorted(daily):
        minutes = daily[date].work_minutes
        if minutes > 0 and (best is None or minutes > best[1]):
            best = (date, minutes)
    return best


@dataclass
class WeekDay:
    date: str
    label: str
    minutes: int
    hours: float
    is_past: bool
    is_today: bool
    is_future: bool


@dataclass
class WeekProgress:
    week_start: str
    days: List[WeekDay]
    total_minutes: int
    work_day_count: int
    weekly_quota_hours: float
    hours_remaining: float
    hours_per_remaining_day: float
    days_worked: int
    average_minutes_per_day: float


def week_progress(
    daily: Dict[str, DayTotals],
    reference: dt.date,
    today: dt.date,
    daily_quota_hours: float = 8,
) -> WeekProgress:
    """Progress against the weekly quota.

    A week is Monday to Wednesday unless Thursday or Friday has recorded
    work, in which case it is Monday to Friday.
    """
    start = week_start(reference)
    days: List[WeekDay] = []
    for day in iter_days(start, start + dt.timedelta(days=6)):
        totals = daily.get(day.isoformat())
        minutes = totals.work_minutes if totals else 0
        days.append(
            WeekDay(
                date=day.isoformat(),
                label=WEEKDAY_LABELS[day.weekday()],
                minutes=minutes,
                hours=hours_from_minutes(minutes),
                is_past=day <= today,
                is_today=day == today,
                is_future=day > today,
            )
        )
    long_week = any(day.label in ("Thu", "Fri") and day.minutes > 0 for day in days)
    work_days = FULL_WEEK if long_week else SHORT_WEEK
    weekly_quota = daily_quota_hours * 60 * len(work_days)
    completed = sum(day.minutes for day in days if day.is_past and not day.is_today and day.label in work_days)
    remaining_days = sum(1 for day in days if day.label in work_days and (day.is_future or day.is_today))
    hours_remaining = max(0.0, weekly_quota - completed) / 60
    total = sum(day.minutes for day in days)
    worked = sum(1 for day in days if day.minutes > 0)
    return WeekProgress(
        week_start=start.isoformat(),
        days=days,
        total_minutes=total,
        work_day_count=len(work_days),
        weekly_quota_hours=weekly_quota / 60,
        hours_remaining=hours_remaining,
        hours_per_remaining_day=hours_remaining / remaining_days if remaining_days else 0.0,
        days_worked=worked,
        average_minutes_per_day=total / worked if worked else 0.0,
    )


@dataclass
class ProjectShare:
    project_id: str
    name: str
    color: str
    minutes: int
    hours: float


def project_distribution(project_minutes: Dict[str, int], projects: Sequence[Project]) -> List[ProjectShare]:
    """Minutes per project, largest first; unknown ids are kept as "Unknown"."""
    by_id = {project.id: project for project in projects}
    shares = []
    for project_id, minutes in project_minutes.items():
        project = by_id.get(project_id)
        shares.append(
            ProjectShare(
                project_id=project_id,
                name=project.name if project else "Unknown",
                color=project.color if project else "",
                minutes=minutes,
                hours=hours_from_minutes(minutes),
            )
        )
    shares.sort(key=lambda share: (-share.minutes, share.name.casefold()))
    return shares


@dataclass
class ProjectStatistics:
    project_id: str
    total_minutes: int = 0
    total_sessions: int = 0
    days_worked: int = 0
    this_week_minutes: int = 0
    this_month_minutes: int = 0
    average_minutes_per_day: float = 0.0
    average_minutes_per_session: float = 0.0
    first_worked_date: Optional[str] = None
    last_worked_date: Optional[str] = None
    longest_session: int = 0
    shortest_session: int = 0
    most_productive_day: Optional[str] = None
    most_productive_day_minutes: int = 0
    recent_activity: List[Tuple[str, int]] = field(default_factory=list)


def project_statistics(entries: Iterable[DayEntry], project_id: str, today: dt.date) -> ProjectStatistics:
    """Statistics for one project over completed sessions only."""
    stats = ProjectStatistics(project_id=project_id)
    week_from, week_to = period_bounds("week", today)
    month_from, month_to = period_bounds("month", today)
    weekday_minutes: Dict[str, int] = defaultdict(int)
    daily: List[Tuple[str, int]] = []
    shortest: Optional[int] = None

    for entry in entries:
        day = parse_date(entry.date)
        item = next((item for item in entry.projects if item.project_id == project_id), None)
        if day is None or item is None:
            continue
        completed = [session for session in item.work_sessions if session.start and session.end]
        if not completed:
            continue
        stats.days_worked += 1
        minutes_today = 0
        for session in completed:
            minutes = duration(session.start, session.end)
            minutes_today += minutes
            stats.total_sessions += 1
            stats.longest_session = max(stats.longest_session, minutes)
            if minutes > 0 and (shortest is None or minutes < shortest):
                shortest = minutes
        stats.total_minutes += minutes_today
        weekday_minutes[WEEKDAY_NAMES[day.weekday()]] += minutes_today
        daily.append((entry.date, minutes_today))
        if stats.first_worked_date is None or entry.date < stats.first_worked_date:
            stats.first_worked_date = entry.date
        if stats.last_worked_date is None or entry.date > stats.last_worked_date:
            stats.last_worked_date = entry.date
        if week_from <= day <= week_to:
            stats.this_week_minutes += minutes_today
        if month_from <= day <= month_to:
            stats.this_month_minutes += minutes_today

    stats.shortest_session = shortest or 0
    if stats.days_worked:
        stats.average_minutes_per_day = stats.total_minutes / stats.days_worked
    if stats.total_sessions:
        stats.average_minutes_per_session = stats.total_minutes / stats.total_sessions
    productive = [(name, minutes) for name, minutes in weekday_minutes.items() if minutes > 0]
    if productive:
        name, minutes = max(productive, key=lambda pair: pair[1])
        stats.most_productive_day = name
        stats.most_productive_day_minutes = minutes
    stats.recent_activity = sorted(daily, reverse=True)[:7]
    return stats


@dataclass
class LedgerStatistics:
    today: str
    all_time: RangeSummary
    week: RangeSummary
    month: RangeSummary
    current_streak: int
    longest_streak: int
    weekday_averages: List[WeekdayAverage]
    heatmap: List[HeatmapCell]
    daily_series: List[DailyPoint]
    clock: ClockAverages
    best_day: Optional[str]
    best_day_minutes: int
    projects: List[ProjectShare]
    week_progress: WeekProgress
    average_work_per_day: float
    average_office_per_day: float
    average_home_per_day: float
    average_lunch_per_day: float


def ledger_statistics(
    entries: Sequence[DayEntry],
    projects: Sequence[Project],
    today: dt.date,
    now_minutes: Optional[int] = None,
    daily_quota_hours: float = 8,
    heatmap_days: int = 112,
    week_of: Optional[dt.date] = None,
) -> LedgerStatistics:
    daily = totals_by_date(entries, today, now_minutes)
    worked = worked_dates(daily)
    all_time = summarize_range(daily)
    days = all_time.days_worked
    best = best_day(daily)
    return LedgerStatistics(
        today=today.isoformat(),
        all_time=all_time,
        week=summarize_range(daily, *period_bounds("week", today)),
        month=summarize_range(daily, *period_bounds("month", today)),
        current_streak=current_streak(worked, today),
        longest_streak=longest_streak(worked),
        weekday_averages=weekday_averages(daily),
        heatmap=heatmap(daily, today, heatmap_days),
        daily_series=daily_series(daily, today),
        clock=clock_averages(entries),
        best_day=best[0] if best else None,
        best_day_minutes=best[1] if best else 0,
        projects=project_distribution(all_time.project_minutes, projects),
        week_progress=week_progress(daily, week_of or today, today, daily_quota_hours),
        average_work_per_day=all_time.work_minutes / days if days else 0.0,
        average_office_per_day=all_time.office_minutes / days if days else 0.0,
        average_home_per_day=all_time.home_minutes / days if days else 0.0,
        average_lunch_per_day=all_time.lunch_minutes / days if days else 0.0,
    )
