"""Snapshot-based undo/redo over the whole ledger.

Each snapshot is a full serialised copy of (entries, projects). A snapshot is
taken before a mutation, so popping one restores the state as it was before
that action.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from .schemas import LedgerState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerSnapshot:
    label: str
    timestamp: float
    state: LedgerState


@dataclass
class PendingSnapshot:
    label: str
    state: LedgerState
    deadline: float


class UndoHistory:
    def __init__(
        self,
        max_depth: int = 30,
        debounce_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_depth = max(1, int(max_depth))
        self.debounce_seconds = debounce_seconds
        self._clock = clock
        self._undo: List[LedgerSnapshot] = []
        self._redo: List[LedgerSnapshot] = []
        self._pending: Optional[PendingSnapshot] = None

    @property
    def can_undo(self) -> bool:
        return bool(self._undo) or self._pending is not None

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_label(self) -> Optional[str]:
        if self._pending is not None:
            return self._pending.label
        return self._undo[-1].label if self._undo else None

    @property
    def redo_label(self) -> Optional[str]:
        return self._redo[-1].label if self._redo else None

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    @property
    def redo_depth(self) -> int:
        return len(self._redo)

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def _commit(self, label: str, state: LedgerState) -> bool:
        if self._undo and self._undo[-1].state == state:
            return False
        self._undo.append(LedgerSnapshot(label=label, timestamp=time.time(), state=state))
        if len(self._undo) > self.max_depth:
            del self._undo[: len(self._undo) - self.max_depth]
        self._redo.clear()
        return True

    def push(self, label: str, state: LedgerState) -> bool:
        """Record ``state`` as an undo step; returns False for a duplicate."""
        self.flush()
        return self._commit(label, state)

    def push_debounced(self, label: str, state: LedgerState) -> None:
        """Coalesce rapid edits into one step committed after an idle period.

        The buffered state is the one from before the first edit of the burst;
        the label follows the latest edit.
        """
        deadline = self._clock() + self.debounce_seconds
        self._redo.clear()
        if self._pending is None:
            self._pending = PendingSnapshot(label=label, state=state, deadline=deadline)
        else:
            self._pending.label = label
            self._pending.deadline = deadline

    def poll(self, now: Optional[float] = None) -> bool:
        """Commit the pending snapshot when its deadline has passed."""
        if self._pending is None:
            return False
        current = self._clock() if now is None else now
        if current < self._pending.deadline:
            return False
        return self.flush()

    def flush(self) -> bool:
        pending, self._pending = self._pending, None
        if pending is None:
            return False
        committed = self._commit(pending.label, pending.state)
        if committed:
            logger.debug("Committed debounced snapshot '%s'", pending.label)
        return committed

    def undo(self, current: LedgerState) -> Optional[LedgerSnapshot]:
        """Pop the latest step; ``current`` moves onto the redo stack."""
        self.flush()
        if not self._undo:
            return None
        snapshot = self._undo.pop()
        self._redo.append(LedgerSnapshot(label=snapshot.label, timestamp=time.time(), state=current))
        if len(self._redo) > self.max_depth:
            del self._redo[: len(self._redo) - self.max_depth]
        return snapshot

    def redo(self, current: LedgerState) -> Optional[LedgerSnapshot]:
        self.flush()
        if not self._redo:
            return None
        snapshot = self._redo.pop()
        self._undo.append(LedgerSnapshot(label=snapshot.label, timestamp=time.time(), state=current))
        if len(self._undo) > self.max_depth:
            del self._undo[: len(self._undo) - self.max_depth]
        return snapshot
