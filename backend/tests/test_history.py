from __future__ import annotations

from timeledger.history import UndoHistory
from timeledger.schemas import LedgerState


def _state(tag: str) -> LedgerState:
    return LedgerState(entries_json=f'[{{"tag": "{tag}"}}]', projects_json="[]")


def test_undo_then_redo_round_trip() -> None:
    history = UndoHistory()
    history.push("Create project", _state("a"))

    snapshot = history.undo(_state("b"))
    assert snapshot is not None
    assert snapshot.state == _state("a")
    assert snapshot.label == "Create project"
    assert history.can_redo and not history.can_undo

    redone = history.redo(_state("a"))
    assert redone is not None
    assert redone.state == _state("b")
    assert history.can_undo and not history.can_redo


def test_undo_and_redo_on_empty_stacks_return_none() -> None:
    history = UndoHistory()
    assert history.undo(_state("a")) is None
    assert history.redo(_state("a")) is None


def test_push_clears_redo_and_dedupes() -> None:
    history = UndoHistory()
    history.push("Edit project", _state("a"))
    history.undo(_state("b"))

    assert history.push("Edit project", _state("a")) is True
    assert not history.can_redo
    assert history.push("Edit project", _state("a")) is False
    assert history.undo_depth == 1


def test_overflow_evicts_oldest() -> None:
    history = UndoHistory(max_depth=3)
    for tag in "abcde":
        history.push(f"step {tag}", _state(tag))

    assert history.undo_depth == 3
    popped = [history.undo(_state("now")).label for _ in range(3)]
    assert popped == ["step e", "step d", "step c"]
    assert history.undo(_state("now")) is None


def test_debounced_pushes_collapse_into_one_step(timer) -> None:
    history = UndoHistory(debounce_seconds=1.0, clock=timer)

    history.push_debounced("Edit notes", _state("before"))
    timer.advance(0.5)
    history.push_debounced("Edit notes", _state("typing-1"))
    timer.advance(0.5)
    history.push_debounced("Edit notes", _state("typing-2"))

    assert history.pending
    assert history.can_undo
    assert history.undo_depth == 0
    assert not history.poll()

    timer.advance(1.0)
    assert history.poll()
    assert not history.pending
    assert history.undo_depth == 1
    assert history.undo(_state("after")).state == _state("before")


def test_explicit_push_flushes_pending_first(timer) -> None:
    history = UndoHistory(debounce_seconds=1.0, clock=timer)
    history.push_debounced("Edit notes", _state("a"))
    history.push("Delete project", _state("b"))

    assert history.undo_depth == 2
    assert history.undo_label == "Delete project"
    history.undo(_state("c"))
    assert history.undo_label == "Edit notes"


def test_undo_flushes_pending_snapshot(timer) -> None:
    history = UndoHistory(debounce_seconds=1.0, clock=timer)
    history.push_debounced("Edit notes", _state("a"))

    snapshot = history.undo(_state("b"))

    assert snapshot.state == _state("a")
    assert not history.pending
    assert history.redo_label == "Edit notes"


def test_flush_commits_exactly_once(timer) -> None:
    history = UndoHistory(debounce_seconds=1.0, clock=timer)
    history.push_debounced("Edit notes", _state("a"))

    assert history.flush()
    assert not history.flush()
    timer.advance(5)
    assert not history.poll()
    assert history.undo_depth == 1


def test_debounced_edit_after_undo_discards_redo(timer) -> None:
    history = UndoHistory(debounce_seconds=1.0, clock=timer)
    history.push("Create project", _state("a"))
    history.undo(_state("b"))
    assert history.can_redo

    history.push_debounced("Edit notes", _state("a"))

    assert not history.can_redo
    assert history.redo(_state("c")) is None
