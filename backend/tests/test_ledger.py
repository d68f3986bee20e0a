from __future__ import annotations

import asyncio
import contextlib
import threading
import time

import pytest

from timeledger.errors import PreconditionError
from timeledger.live import LiveTicker
from timeledger.persistence import MemoryStore
from timeledger.schemas import Break, ExternalProjectRecord
from timeledger.services import Ledger

DAY = "2024-01-10"


def test_mutations_persist_and_record_undo_steps(ledger: Ledger, port: MemoryStore, config, clock) -> None:
    project = ledger.create_project({"name": "Alpha"})

    assert ledger.history_state().undo_label == "Create project"
    reopened = Ledger(port, config, clock=clock)
    assert [item.id for item in reopened.list_projects()] == [project.id]


def test_undo_and_redo_restore_and_persist(ledger: Ledger, port: MemoryStore, config, clock) -> None:
    project = ledger.create_project({"name": "Alpha"})
    ledger.delete_project(project.id)

    snapshot = ledger.undo()
    assert snapshot.label == "Delete project"
    assert [item.name for item in ledger.list_projects()] == ["Alpha"]
    assert [item.name for item in Ledger(port, config, clock=clock).list_projects()] == ["Alpha"]

    ledger.redo()
    assert ledger.list_projects() == []
    assert ledger.undo() is not None
    assert ledger.undo() is not None
    assert ledger.undo() is None


def test_failed_action_leaves_ledger_untouched(ledger: Ledger) -> None:
    project = ledger.create_project({"name": "Alpha"})
    item = ledger.add_project_to_day(DAY, project.id)
    ledger.start_break(DAY, at="10:00")
    ledger.start_session(DAY, item.id, at="10:05")
    depth = ledger.history_state().undo_depth

    with pytest.raises(PreconditionError):
        ledger.start_break(DAY, at="10:10")

    sessions = ledger.get_day(DAY).projects[0].work_sessions
    assert [(session.start, session.end) for session in sessions] == [("10:05", "")]
    assert ledger.history_state().undo_depth == depth


def test_no_op_changes_do_not_create_undo_steps(ledger: Ledger) -> None:
    project = ledger.create_project({"name": "Alpha"})
    ledger.add_project_to_day(DAY, project.id)
    depth = ledger.history_state().undo_depth

    ledger.add_project_to_day(DAY, project.id)

    assert ledger.history_state().undo_depth == depth


def test_note_edits_coalesce_into_one_step(ledger: Ledger, timer) -> None:
    ledger.update_day(DAY, {"clock_in": "08:00"})
    for text in ("M", "Me", "Meeting"):
        ledger.update_day(DAY, {"schedule_notes": text})
        timer.advance(0.3)

    state = ledger.history_state()
    assert state.pending
    assert state.undo_label == "Edit notes"

    timer.advance(1.0)
    assert ledger.poll_history()
    assert not ledger.flush_history()
    assert ledger.history_state().undo_depth == 2

    ledger.undo()
    assert ledger.get_day(DAY).schedule_notes == ""
    assert ledger.get_day(DAY).clock_in == "08:00"


def test_session_note_edit_is_debounced(ledger: Ledger) -> None:
    project = ledger.create_project({"name": "Alpha"})
    item = ledger.add_project_to_day(DAY, project.id)
    item = ledger.start_session(DAY, item.id, at="09:00")
    sessions = [session.model_dump() for session in item.work_sessions]
    sessions[0]["done_notes"] = "Drafted"

    ledger.update_project_in_day(DAY, item.id, {"work_sessions": sessions})

    assert ledger.history_state().pending
    assert ledger.get_day(DAY).projects[0].work_sessions[0].done_notes == "Drafted"


def test_actions_default_to_current_time(ledger: Ledger, clock) -> None:
    clock.set(8, 7)
    assert ledger.clock_in(DAY).clock_in == "08:07"

    ledger.update_settings({"round_to_five": True})
    clock.set(12, 3)
    entry = ledger.switch_location(DAY)
    assert entry.attendance[-1].start == "12:05"


def test_dry_run_external_import_does_not_mutate(ledger: Ledger) -> None:
    records = [ExternalProjectRecord(id="ext-1", subject="Migration"), ExternalProjectRecord(id="ext-2", subject="")]

    preview = ledger.import_external(records, dry_run=True)

    assert (preview.created, preview.updated, preview.skipped) == (1, 0, 1)
    assert ledger.list_projects() == []
    assert not ledger.history_state().can_undo

    result = ledger.import_external(records)
    assert (result.created, result.skipped) == (1, 1)
    assert ledger.history_state().undo_label == "Sync projects"
    again = ledger.import_external([ExternalProjectRecord(id="ext-1", subject="Migration v2")])
    assert (again.created, again.updated) == (0, 1)
    assert [project.name for project in ledger.list_projects()] == ["Migration v2"]


def test_import_document_creates_placeholder_projects(ledger: Ledger) -> None:
    document = {
        "version": 1,
        "exportedAt": "2024-01-10T12:00:00Z",
        "exportType": "day",
        "entries": [
            {
                "date": "2024-01-08",
                "projects": [{"name": "Mystery", "workSessions": [{"start": "09:00", "end": "10:00"}]}],
            }
        ],
    }

    result = ledger.import_document(document)

    assert result.placeholders == ["Mystery"]
    assert result.projects.created == 1
    assert result.entries.created == 1
    [project] = ledger.list_projects()
    assert ledger.get_day("2024-01-08").projects[0].project_id == project.id
    assert ledger.history_state().undo_label == "Import data"


def test_live_summary_counts_open_intervals_for_today(ledger: Ledger, clock) -> None:
    project = ledger.create_project({"name": "Alpha"})
    item = ledger.add_project_to_day(DAY, project.id)
    ledger.clock_in(DAY, at="08:00")
    ledger.start_session(DAY, item.id, at="09:00")
    clock.set(9, 45)

    summary = LiveTicker(ledger, interval=1).tick()

    assert summary is not None
    assert summary.running
    assert summary.work_minutes == 45
    assert summary.attendance_minutes == 105
    assert ledger.live_status() is summary

    ledger.clock_out(DAY, at="09:50")
    assert ledger.refresh_live() is None
    assert ledger.live_status().work_minutes == 50


def test_live_day_lists_intervals_without_duration(ledger: Ledger) -> None:
    ledger.update_day(DAY, {"breaks": [Break(start="12:00", end="11:30"), Break(start="15:00", end="15:10")]})

    summary = ledger.live_day(DAY)

    assert summary.break_minutes == 10
    assert summary.warnings == ["Break 12:00-11:30 has no duration"]


def test_live_day_for_past_dates_ignores_open_intervals(ledger: Ledger) -> None:
    ledger.clock_in("2024-01-09", at="08:00")
    summary = ledger.live_day("2024-01-09")
    assert summary.attendance_minutes == 0
    assert not summary.running


def test_statistics_use_local_now(ledger: Ledger, clock) -> None:
    project = ledger.create_project({"name": "Alpha"})
    item = ledger.add_project_to_day(DAY, project.id)
    ledger.start_session(DAY, item.id, at="09:00")
    clock.set(10, 0)

    result = ledger.statistics()

    assert result.today == DAY
    assert result.all_time.work_minutes == 60
    assert result.current_streak == 1
    assert ledger.project_statistics(project.id).total_minutes == 0


def test_ticker_keeps_event_loop_responsive_while_ledger_is_busy(ledger: Ledger) -> None:
    ticker = LiveTicker(ledger, interval=0.01)
    held = threading.Event()
    release = threading.Event()

    def hold_lock() -> None:
        with ledger._lock:
            held.set()
            release.wait(2)

    worker = threading.Thread(target=hold_lock)
    worker.start()
    assert held.wait(1)

    async def scenario() -> float:
        task = asyncio.create_task(ticker.run())
        started = time.monotonic()
        await asyncio.sleep(0.05)
        elapsed = time.monotonic() - started
        release.set()
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        return elapsed

    try:
        elapsed = asyncio.run(scenario())
    finally:
        release.set()
        worker.join()

    assert elapsed < 0.5
