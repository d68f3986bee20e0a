"""The single mutation gate over the ledger.

Every change runs through :meth:`Ledger._mutate`: the state before the change
becomes an undo step, the change is applied to the in-memory store, and the
whole ledger is written back through the persistence port. A change that
raises leaves the ledger exactly as it was.
"""

from __future__ import annotations

import datetime as dt
import logging
from threading import RLock
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar, Union
from zoneinfo import ZoneInfo

from . import exports, sync, tracking
from .config import Settings, settings
from .history import LedgerSnapshot, UndoHistory
from .intervals import current_minutes, current_time_string
from .live import LiveDaySummary, live_day_summary
from .persistence import LedgerStore
from .schemas import (
    DayEntry,
    DayProjectEntry,
    ExternalProjectRecord,
    HistoryResponse,
    ImportResult,
    LedgerImportResponse,
    LocationType,
    MergedTimeEntry,
    Project,
    SyncOutcome,
    SyncResult,
)
from .state import RuntimeState
from .stats import LedgerStatistics, ProjectStatistics, ledger_statistics, project_statistics
from .store import EntityStore
from .utils import normalize_name

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLOCK_FIELDS = {"clock_in", "clock_out", "lunch_start", "lunch_end", "attendance"}
TIME_FIELD_LABELS = {
    "clock_in": "Update clock time",
    "clock_out": "Update clock time",
    "lunch_start": "Update lunch time",
    "lunch_end": "Update lunch time",
}


def _session_times(item: DayProjectEntry) -> List[tuple]:
    return [(session.id, session.start, session.end, session.task_id) for session in item.work_sessions]


class Ledger:
    def __init__(
        self,
        port: LedgerStore,
        config: Settings = settings,
        clock: Optional[Callable[[], dt.datetime]] = None,
        history: Optional[UndoHistory] = None,
    ) -> None:
        self.port = port
        self.config = config
        self.tz = ZoneInfo(config.timezone)
        self._clock = clock or (lambda: dt.datetime.now(self.tz))
        self._lock = RLock()
        self.history = history or UndoHistory(
            max_depth=config.history_depth,
            debounce_seconds=config.snapshot_debounce_seconds,
        )
        self.preferences = RuntimeState(config)
        self.preferences.load(port)
        projects, entries = port.load()
        self.store = EntityStore(projects, entries, clock=self.now, config=config)
        self.live: Optional[LiveDaySummary] = None
        logger.info("Loaded ledger with %d projects and %d day entries", len(projects), len(entries))

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def now(self) -> dt.datetime:
        moment = self._clock()
        if moment.tzinfo is None:
            return moment.replace(tzinfo=self.tz)
        return moment.astimezone(self.tz)

    def today(self) -> dt.date:
        return self.now().date()

    def _at(self, at: Optional[str]) -> str:
        if at:
            return at
        return current_time_string(self.now(), round_five=self.preferences.round_to_five)

    # ------------------------------------------------------------------
    # Mutation gate
    # ------------------------------------------------------------------

    def _save(self) -> None:
        self.port.save(self.store.projects, self.store.entries)

    def _mutate(self, label: str, action: Callable[[], T], debounce: bool = False) -> T:
        with self._lock:
            before = self.store.state()
            try:
                result = action()
            except Exception:
                self.store.restore(before)
                raise
            if self.store.state() == before:
                return result
            if debounce:
                self.history.push_debounced(label, before)
            else:
                self.history.push(label, before)
            self._save()
            self.live = None
            return result

    def _restore(self, snapshot: Optional[LedgerSnapshot]) -> Optional[LedgerSnapshot]:
        if snapshot is None:
            return None
        self.store.restore(snapshot.state)
        self._save()
        self.live = None
        return snapshot

    def undo(self) -> Optional[LedgerSnapshot]:
        with self._lock:
            snapshot = self._restore(self.history.undo(self.store.state()))
            if snapshot is not None:
                logger.info("Undid '%s'", snapshot.label)
            return snapshot

    def redo(self) -> Optional[LedgerSnapshot]:
        with self._lock:
            snapshot = self._restore(self.history.redo(self.store.state()))
            if snapshot is not None:
                logger.info("Redid '%s'", snapshot.label)
            return snapshot

    def poll_history(self) -> bool:
        with self._lock:
            return self.history.poll()

    def flush_history(self) -> bool:
        with self._lock:
            return self.history.flush()

    def history_state(self) -> HistoryResponse:
        with self._lock:
            return HistoryResponse(
                can_undo=self.history.can_undo,
                can_redo=self.history.can_redo,
                undo_label=self.history.undo_label,
                redo_label=self.history.redo_label,
                undo_depth=self.history.undo_depth,
                redo_depth=self.history.redo_depth,
                pending=self.history.pending,
            )

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def list_projects(self) -> List[Project]:
        return sorted(self.store.projects, key=lambda project: project.name.casefold())

    def get_project(self, project_id: str) -> Project:
        return self.store.require_project(project_id)

    def create_project(self, data: Mapping[str, Any]) -> Project:
        return self._mutate("Create project", lambda: self.store.add_project(data))

    def update_project(self, project_id: str, patch: Mapping[str, Any]) -> Project:
        return self._mutate("Edit project", lambda: self.store.update_project(project_id, patch))

    def delete_project(self, project_id: str) -> Project:
        return self._mutate("Delete project", lambda: self.store.delete_project(project_id))

    def import_external(
        self,
        records: Sequence[ExternalProjectRecord],
        dry_run: bool = False,
        mapper: Optional[sync.ProjectMapper] = None,
    ) -> ImportResult:
        moment = self.now()
        convert = mapper or (lambda record: sync.map_external_project(record, moment))
        projects = sync.map_external_projects(records, convert)
        if dry_run:
            with self._lock:
                plan = self.store.plan_project_import(projects)
            return plan.result(skipped=len(projects) - plan.created - plan.updated)
        return self._mutate("Sync projects", lambda: self.store.import_projects(projects))

    # ------------------------------------------------------------------
    # Day entries
    # ------------------------------------------------------------------

    def get_day(self, date: Union[dt.date, str]) -> Optional[DayEntry]:
        return self.store.get_entry(date)

    def list_days(self, start: Optional[dt.date] = None, end: Optional[dt.date] = None) -> List[DayEntry]:
        entries = sorted(self.store.entries, key=lambda entry: entry.date)
        if start is not None:
            entries = [entry for entry in entries if entry.date >= start.isoformat()]
        if end is not None:
            entries = [entry for entry in entries if entry.date <= end.isoformat()]
        return entries

    def update_day(self, date: Union[dt.date, str], patch: Mapping[str, Any]) -> DayEntry:
        fields = set(patch)
        if fields <= {"schedule_notes"}:
            label, debounce = "Edit notes", True
        elif fields & CLOCK_FIELDS:
            label, debounce = "Update clock time", False
        elif "breaks" in fields:
            label, debounce = "Update break", False
        else:
            label, debounce = "Edit day", False
        return self._mutate(label, lambda: self.store.create_or_update_day_entry(date, patch), debounce=debounce)

    def add_project_to_day(self, date: Union[dt.date, str], project_id: str) -> DayProjectEntry:
        return self._mutate("Add project to day", lambda: self.store.add_project_to_day(date, project_id))

    def update_project_in_day(
        self, date: Union[dt.date, str], entry_id: str, patch: Mapping[str, Any]
    ) -> DayProjectEntry:
        current = self.store.get_project_entry(date, entry_id)
        notes_only = set(patch) <= {"notes", "work_sessions"}
        if notes_only and "work_sessions" in patch:
            proposed = DayProjectEntry.model_validate({**current.model_dump(), "work_sessions": patch["work_sessions"]})
            notes_only = _session_times(proposed) == _session_times(current)
        label = "Edit notes" if notes_only else "Edit work session"
        return self._mutate(
            label,
            lambda: self.store.update_project_in_day(date, entry_id, patch),
            debounce=notes_only,
        )

    def remove_project_from_day(self, date: Union[dt.date, str], entry_id: str) -> DayProjectEntry:
        return self._mutate("Remove project from day", lambda: self.store.remove_project_from_day(date, entry_id))

    def reorder_projects(self, date: Union[dt.date, str], from_index: int, to_index: int) -> DayEntry:
        return self._mutate(
            "Reorder projects", lambda: self.store.reorder_projects_in_day(date, from_index, to_index)
        )

    # ------------------------------------------------------------------
    # Clock, breaks and sessions
    # ------------------------------------------------------------------

    def clock_in(self, date: Union[dt.date, str], location: LocationType = "office", at: Optional[str] = None) -> DayEntry:
        moment = self._at(at)
        return self._mutate("Update clock time", lambda: tracking.clock_in(self.store, date, location, moment))

    def clock_out(self, date: Union[dt.date, str], at: Optional[str] = None) -> DayEntry:
        moment = self._at(at)
        return self._mutate("Update clock time", lambda: tracking.clock_out(self.store, date, moment))

    def switch_location(self, date: Union[dt.date, str], at: Optional[str] = None) -> DayEntry:
        moment = self._at(at)
        return self._mutate("Switch location", lambda: tracking.switch_location(self.store, date, moment))

    def set_time(self, date: Union[dt.date, str], field: str, at: Optional[str] = None) -> DayEntry:
        moment = self._at(at)
        label = TIME_FIELD_LABELS.get(field, "Update clock time")
        return self._mutate(label, lambda: tracking.set_time_field(self.store, date, field, moment))

    def start_break(self, date: Union[dt.date, str], at: Optional[str] = None) -> DayEntry:
        moment = self._at(at)
        return self._mutate("Update break", lambda: tracking.start_break(self.store, date, moment))

    def end_break(self, date: Union[dt.date, str], at: Optional[str] = None) -> DayEntry:
        moment = self._at(at)
        return self._mutate("Update break", lambda: tracking.end_break(self.store, date, moment))

    def start_session(
        self,
        date: Union[dt.date, str],
        entry_id: str,
        at: Optional[str] = None,
        task_id: Optional[str] = None,
    ) -> DayProjectEntry:
        moment = self._at(at)
        return self._mutate(
            "Start work session", lambda: tracking.start_session(self.store, date, entry_id, moment, task_id)
        )

    def end_session(self, date: Union[dt.date, str], entry_id: str, at: Optional[str] = None) -> DayProjectEntry:
        moment = self._at(at)
        return self._mutate("End work session", lambda: tracking.end_session(self.store, date, entry_id, moment))

    def round_day(self, date: Union[dt.date, str]) -> DayEntry:
        return self._mutate("Round times", lambda: tracking.round_day_to_five(self.store, date))

    # ------------------------------------------------------------------
    # Live view
    # ------------------------------------------------------------------

    def live_day(self, date: Union[dt.date, str]) -> LiveDaySummary:
        with self._lock:
            return live_day_summary(self.store.get_entry(date), date, self.now())

    def refresh_live(self) -> Optional[LiveDaySummary]:
        """Recompute the running summary for today, or clear it when nothing is open."""
        with self._lock:
            today = self.today()
            entry = self.store.get_entry(today)
            if tracking.has_open_intervals(entry):
                self.live = live_day_summary(entry, today, self.now())
            else:
                self.live = None
            return self.live

    def live_status(self) -> LiveDaySummary:
        with self._lock:
            return self.live or self.live_day(self.today())

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def statistics(self, week_of: Optional[dt.date] = None) -> LedgerStatistics:
        with self._lock:
            moment = self.now()
            return ledger_statistics(
                self.store.entries,
                self.store.projects,
                moment.date(),
                now_minutes=current_minutes(moment),
                daily_quota_hours=self.preferences.daily_quota_hours,
                heatmap_days=self.config.heatmap_days,
                week_of=week_of,
            )

    def project_statistics(self, project_id: str) -> ProjectStatistics:
        with self._lock:
            self.store.require_project(project_id)
            return project_statistics(self.store.entries, project_id, self.today())

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_day(self, date: dt.date) -> exports.ExportDocument:
        with self._lock:
            return exports.export_day(date, self.store.get_entry(date), self.store.projects, self.now())

    def export_month(self, date: dt.date) -> exports.ExportDocument:
        with self._lock:
            return exports.export_month(date, self.store.entries, self.store.projects, self.now())

    def export_all(self) -> exports.ExportDocument:
        with self._lock:
            return exports.export_all(self.store.entries, self.store.projects, self.now())

    def import_document(self, source: Union[str, bytes, Dict[str, Any]]) -> LedgerImportResponse:
        bundle = exports.parse_export_document(source)

        def apply() -> LedgerImportResponse:
            known = {normalize_name(project.name) for project in self.store.projects}
            placeholders = bundle.placeholder_projects({name for name in known if name})
            project_result = self.store.import_projects(bundle.projects + placeholders)
            entry_result = self.store.import_day_entries(bundle.entries)
            return LedgerImportResponse(
                projects=project_result,
                entries=entry_result,
                placeholders=[project.name for project in placeholders],
            )

        result = self._mutate("Import data", apply)
        logger.info(
            "Imported %d day entries and %d projects",
            result.entries.created + result.entries.updated,
            result.projects.created + result.projects.updated,
        )
        return result

    # ------------------------------------------------------------------
    # Outbound sync
    # ------------------------------------------------------------------

    def sync_preview(self, start: dt.date, end: Optional[dt.date] = None) -> List[MergedTimeEntry]:
        dates = sync.week_dates(start) if end is None else sync.dates_between(start, end)
        with self._lock:
            return sync.build_merged_entries(self.store.entries, self.store.projects, dates)

    def record_sync_results(
        self, entries: Sequence[MergedTimeEntry], outcomes: Sequence[SyncOutcome]
    ) -> SyncResult:
        result = sync.summarize_sync(entries, outcomes)
        logger.info("Time entry sync: %s", result.message)
        return result

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def settings_snapshot(self) -> Dict[str, Any]:
        return self.preferences.snapshot()

    def update_settings(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        self.preferences.persist(self.port, updates)
        return self.preferences.snapshot()
