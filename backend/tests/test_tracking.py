from __future__ import annotations

import pytest

from timeledger import tracking
from timeledger.errors import PreconditionError
from timeledger.schemas import Task
from timeledger.store import EntityStore

DAY = "2024-01-10"


def _project_on_day(store: EntityStore, name: str = "Alpha", **fields):
    project = store.add_project({"name": name, **fields})
    return project, store.add_project_to_day(DAY, project.id)


def test_clock_in_opens_attendance_and_sets_legacy_clock_in(store: EntityStore) -> None:
    entry = tracking.clock_in(store, DAY, "home", "08:05")

    assert entry.clock_in == "08:05"
    assert [(period.start, period.end, period.location) for period in entry.attendance] == [("08:05", "", "home")]
    assert tracking.has_open_intervals(entry)


def test_switch_location_closes_and_reopens(store: EntityStore) -> None:
    tracking.clock_in(store, DAY, "office", "08:00")
    entry = tracking.switch_location(store, DAY, "12:00")

    assert [(period.start, period.end, period.location) for period in entry.attendance] == [
        ("08:00", "12:00", "office"),
        ("12:00", "", "home"),
    ]


def test_switch_location_requires_open_period(store: EntityStore) -> None:
    with pytest.raises(PreconditionError):
        tracking.switch_location(store, DAY, "12:00")


def test_clock_out_closes_sessions_and_periods(store: EntityStore) -> None:
    _, item = _project_on_day(store)
    tracking.clock_in(store, DAY, "office", "08:00")
    tracking.start_session(store, DAY, item.id, "08:30")

    entry = tracking.clock_out(store, DAY, "17:00")

    assert entry.clock_out == "17:00"
    assert all(period.end == "17:00" for period in entry.attendance)
    session = entry.projects[0].work_sessions[0]
    assert (session.start, session.end) == ("08:30", "17:00")
    assert entry.projects[0].hours_worked == 8.5
    assert not tracking.has_open_intervals(entry)


def test_start_break_ends_running_sessions(store: EntityStore) -> None:
    _, item = _project_on_day(store)
    tracking.start_session(store, DAY, item.id, "09:00")

    entry = tracking.start_break(store, DAY, "10:00")

    assert entry.breaks[0].start == "10:00"
    assert entry.breaks[0].end == ""
    assert entry.projects[0].work_sessions[0].end == "10:00"

    with pytest.raises(PreconditionError):
        tracking.start_break(store, DAY, "10:05")

    entry = tracking.end_break(store, DAY, "10:15")
    assert entry.breaks[0].end == "10:15"

    with pytest.raises(PreconditionError):
        tracking.end_break(store, DAY, "10:20")


def test_only_one_session_per_project_runs(store: EntityStore) -> None:
    _, item = _project_on_day(store)
    tracking.start_session(store, DAY, item.id, "09:00")

    with pytest.raises(PreconditionError):
        tracking.start_session(store, DAY, item.id, "09:30")

    ended = tracking.end_session(store, DAY, item.id, "09:45")
    assert ended.hours_worked == 0.75

    with pytest.raises(PreconditionError):
        tracking.end_session(store, DAY, item.id, "10:00")


def test_start_session_resolves_task_name(store: EntityStore) -> None:
    task = Task(name="Review")
    _, item = _project_on_day(store, tasks=[task])

    updated = tracking.start_session(store, DAY, item.id, "09:00", task_id=task.id)

    assert updated.work_sessions[0].task_name == "Review"

    with pytest.raises(PreconditionError):
        tracking.start_session(store, DAY, item.id, "09:00", task_id="unknown")


def test_invalid_time_is_rejected(store: EntityStore) -> None:
    with pytest.raises(PreconditionError):
        tracking.clock_in(store, DAY, "office", "8 o'clock")


def test_lunch_start_ends_running_sessions(store: EntityStore) -> None:
    _, item = _project_on_day(store)
    tracking.start_session(store, DAY, item.id, "09:00")

    entry = tracking.set_time_field(store, DAY, "lunch_start", "12:00")

    assert entry.lunch_start == "12:00"
    assert entry.projects[0].work_sessions[0].end == "12:00"

    with pytest.raises(PreconditionError):
        tracking.set_time_field(store, DAY, "schedule_notes", "12:00")


def test_round_day_to_five(store: EntityStore) -> None:
    _, item = _project_on_day(store)
    tracking.clock_in(store, DAY, "office", "08:02")
    tracking.start_session(store, DAY, item.id, "08:03")
    tracking.end_session(store, DAY, item.id, "09:58")

    entry = tracking.round_day_to_five(store, DAY)

    assert entry.clock_in == "08:00"
    assert entry.attendance[0].start == "08:00"
    session = entry.projects[0].work_sessions[0]
    assert (session.start, session.end) == ("08:05", "10:00")
    assert entry.projects[0].hours_worked == round(115 / 60, 2)
