"""Clock, break and work-session actions for a single day.

Each action takes an explicit wall-clock ``at`` ("HH:MM"); callers decide
whether that is the current time and whether it is rounded. All writes go
through :class:`~timeledger.store.EntityStore`.
"""

from __future__ import annotations

import datetime as dt
from typing import List, Optional

from .errors import PreconditionError
from .intervals import hours_from_minutes, is_open, is_valid_time, round_to_five, sum_durations
from .schemas import AttendancePeriod, Break, DayEntry, DayProjectEntry, LocationType, WorkSession
from .store import EntityStore

TIME_FIELDS = ("clock_in", "clock_out", "lunch_start", "lunch_end")
SESSION_CLOSING_FIELDS = ("clock_out", "lunch_start")


def _check_time(at: str) -> str:
    if not is_valid_time(at):
        raise PreconditionError(f"Invalid time '{at}', expected HH:MM")
    return at


def hours_worked(sessions: List[WorkSession]) -> float:
    return hours_from_minutes(sum_durations(sessions))


def has_open_intervals(entry: Optional[DayEntry]) -> bool:
    if entry is None:
        return False
    if any(is_open(period) for period in entry.attendance):
        return True
    if any(is_open(item) for item in entry.breaks):
        return True
    if entry.lunch_start and not entry.lunch_end:
        return True
    if not entry.attendance and entry.clock_in and not entry.clock_out:
        return True
    return any(is_open(session) for item in entry.projects for session in item.work_sessions)


def close_open_sessions(store: EntityStore, date: dt.date | str, at: str) -> int:
    """End every open work session of the day; returns how many were closed."""
    entry = store.get_entry(date)
    if entry is None:
        return 0
    closed = 0
    for item in entry.projects:
        if not any(is_open(session) for session in item.work_sessions):
            continue
        sessions = [
            session.model_copy(update={"end": at}) if is_open(session) else session
            for session in item.work_sessions
        ]
        closed += sum(1 for session in item.work_sessions if is_open(session))
        store.update_project_in_day(date, item.id, {"work_sessions": sessions, "hours_worked": hours_worked(sessions)})
    return closed


def clock_in(store: EntityStore, date: dt.date | str, location: LocationType, at: str) -> DayEntry:
    _check_time(at)
    entry = store.get_entry(date)
    periods = list(entry.attendance) if entry else []
    patch = {"attendance": periods + [AttendancePeriod(start=at, end="", location=location)]}
    if not periods:
        patch["clock_in"] = at
    return store.create_or_update_day_entry(date, patch)


def clock_out(store: EntityStore, date: dt.date | str, at: str) -> DayEntry:
    _check_time(at)
    close_open_sessions(store, date, at)
    entry = store.get_entry(date)
    periods = list(entry.attendance) if entry else []
    closed = [period.model_copy(update={"end": at}) if is_open(period) else period for period in periods]
    return store.create_or_update_day_entry(date, {"attendance": closed, "clock_out": at})


def switch_location(store: EntityStore, date: dt.date | str, at: str) -> DayEntry:
    _check_time(at)
    entry = store.get_entry(date)
    periods = list(entry.attendance) if entry else []
    active = next((period for period in reversed(periods) if is_open(period)), None)
    if active is None:
        raise PreconditionError("Not clocked in; there is no open attendance period to switch")
    target: LocationType = "home" if active.location == "office" else "office"
    periods = [period.model_copy(update={"end": at}) if period.id == active.id else period for period in periods]
    periods.append(AttendancePeriod(start=at, end="", location=target))
    return store.create_or_update_day_entry(date, {"attendance": periods})


def set_time_field(store: EntityStore, date: dt.date | str, field: str, at: str) -> DayEntry:
    """Set one of the legacy day time fields; leaving for lunch or the day ends running sessions."""
    if field not in TIME_FIELDS:
        raise PreconditionError(f"Unknown time field '{field}'")
    _check_time(at)
    if field in SESSION_CLOSING_FIELDS:
        close_open_sessions(store, date, at)
    return store.create_or_update_day_entry(date, {field: at})


def start_break(store: EntityStore, date: dt.date | str, at: str) -> DayEntry:
    _check_time(at)
    close_open_sessions(store, date, at)
    entry = store.get_entry(date)
    breaks = list(entry.breaks) if entry else []
    if any(is_open(item) for item in breaks):
        raise PreconditionError("A break is already running")
    return store.create_or_update_day_entry(date, {"breaks": breaks + [Break(start=at, end="")]})


def end_break(store: EntityStore, date: dt.date | str, at: str) -> DayEntry:
    _check_time(at)
    entry = store.require_entry(date)
    if not any(is_open(item) for item in entry.breaks):
        raise PreconditionError("No break is running")
    breaks = [item.model_copy(update={"end": at}) if is_open(item) else item for item in entry.breaks]
    return store.create_or_update_day_entry(date, {"breaks": breaks})


def start_session(
    store: EntityStore,
    date: dt.date | str,
    entry_id: str,
    at: str,
    task_id: Optional[str] = None,
) -> DayProjectEntry:
    _check_time(at)
    item = store.get_project_entry(date, entry_id)
    if any(is_open(session) for session in item.work_sessions):
        raise PreconditionError("A work session is already running for this project")
    task_name = None
    if task_id:
        project = store.require_project(item.project_id)
        task = next((task for task in project.tasks if task.id == task_id), None)
        if task is None:
            raise PreconditionError(f"Task {task_id} does not belong to project {project.name}")
        task_name = task.name
    session = WorkSession(start=at, end="", task_id=task_id, task_name=task_name)
    return store.update_project_in_day(date, entry_id, {"work_sessions": list(item.work_sessions) + [session]})


def end_session(store: EntityStore, date: dt.date | str, entry_id: str, at: str) -> DayProjectEntry:
    _check_time(at)
    item = store.get_project_entry(date, entry_id)
    if not any(is_open(session) for session in item.work_sessions):
        raise PreconditionError("No work session is running for this project")
    sessions = [
        session.model_copy(update={"end": at}) if is_open(session) else session for session in item.work_sessions
    ]
    return store.update_project_in_day(date, entry_id, {"work_sessions": sessions, "hours_worked": hours_worked(sessions)})


def _rounded(value: str) -> str:
    return round_to_five(value) if value else value


def round_day_to_five(store: EntityStore, date: dt.date | str) -> DayEntry:
    entry = store.require_entry(date)
    patch = {field: _rounded(getattr(entry, field)) for field in TIME_FIELDS if getattr(entry, field)}
    patch["breaks"] = [
        item.model_copy(update={"start": _rounded(item.start), "end": _rounded(item.end)}) for item in entry.breaks
    ]
    patch["attendance"] = [
        period.model_copy(update={"start": _rounded(period.start), "end": _rounded(period.end)})
        for period in entry.attendance
    ]
    projects = []
    for item in entry.projects:
        sessions = [
            session.model_copy(update={"start": _rounded(session.start), "end": _rounded(session.end)})
            for session in item.work_sessions
        ]
        if sessions:
            item = item.model_copy(update={"work_sessions": sessions, "hours_worked": hours_worked(sessions)})
        projects.append(item)
    patch["projects"] = projects
    return store.create_or_update_day_entry(date, patch)
