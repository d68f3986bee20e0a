"""In-memory project and day-entry collections.

The store owns both collections. It never persists anything itself; the
:class:`~timeledger.services.Ledger` gate loads it from a persistence port and
saves it back after every mutation.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Callable, Collection, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from .config import Settings, settings
from .errors import InvalidProjectError, NotFoundError, PreconditionError
from .persistence import decode_entries, decode_projects, encode_records
from .reconcile import DAY_ENTRY_RULES, PROJECT_RULES, ReconciliationPlan, reconcile
from .schemas import (
    DAY_ENTRY_FIELDS,
    DayEntry,
    DayProjectEntry,
    ImportedDayEntry,
    ImportResult,
    LedgerState,
    Project,
)
from .utils import date_key, generate_id, isoformat_utc, normalize_name, parse_date, utcnow

logger = logging.getLogger(__name__)

PROTECTED_PROJECT_FIELDS = {"id", "color", "created_at", "updated_at"}


def hue_for(index: int, count: int, hue_span: int, default_hue: int) -> int:
    if count <= 1:
        return default_hue
    return int(index * hue_span / (count - 1) + 0.5)


def assign_colors(
    projects: Sequence[Project],
    hue_span: int = 330,
    default_hue: int = 152,
    saturation: int = 65,
    lightness: int = 50,
) -> Dict[str, str]:
    """Map project ids to colours spread evenly over the hue wheel by name order."""
    ordered = sorted(projects, key=lambda project: (project.name.casefold(), project.id))
    count = len(ordered)
    return {
        project.id: f"hsl({hue_for(index, count, hue_span, default_hue)}, {saturation}%, {lightness}%)"
        for index, project in enumerate(ordered)
    }


def validate_project(project: Project) -> None:
    if not project.name.strip():
        raise InvalidProjectError("Project name must not be empty")
    start = parse_date(project.start_date)
    end = parse_date(project.end_date)
    if start and end and end < start:
        raise InvalidProjectError(f"Project '{project.name}' ends before it starts")


class EntityStore:
    def __init__(
        self,
        projects: Optional[Iterable[Project]] = None,
        entries: Optional[Iterable[DayEntry]] = None,
        clock: Callable[[], dt.datetime] = utcnow,
        config: Settings = settings,
    ) -> None:
        self._clock = clock
        self._config = config
        self._projects: List[Project] = list(projects or [])
        self._entries: List[DayEntry] = list(entries or [])
        self.reassign_colors()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def projects(self) -> List[Project]:
        return list(self._projects)

    @property
    def entries(self) -> List[DayEntry]:
        return list(self._entries)

    def get_project(self, project_id: str) -> Optional[Project]:
        return next((project for project in self._projects if project.id == project_id), None)

    def require_project(self, project_id: str) -> Project:
        project = self.get_project(project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        return project

    def get_entry(self, date: dt.date | str) -> Optional[DayEntry]:
        key = date_key(date)
        return next((entry for entry in self._entries if entry.date == key), None)

    def require_entry(self, date: dt.date | str) -> DayEntry:
        entry = self.get_entry(date)
        if entry is None:
            raise NotFoundError(f"No day entry for {date_key(date)}")
        return entry

    def project_name_map(self) -> Dict[str, str]:
        mapping: Dict[str, str] = {}
        for project in self._projects:
            key = normalize_name(project.name)
            if key:
                mapping.setdefault(key, project.id)
        return mapping

    def state(self) -> LedgerState:
        return LedgerState(
            entries_json=encode_records(self._entries),
            projects_json=encode_records(self._projects),
        )

    def restore(self, state: LedgerState) -> None:
        self._entries = decode_entries(state.entries_json)
        self._projects = decode_projects(state.projects_json)
        self.reassign_colors()

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def _now(self) -> str:
        return isoformat_utc(self._clock())

    def reassign_colors(self) -> None:
        colors = assign_colors(
            self._projects,
            hue_span=self._config.color_hue_span,
            default_hue=self._config.color_default_hue,
            saturation=self._config.color_saturation,
            lightness=self._config.color_lightness,
        )
        self._projects = [
            project if project.color == colors[project.id] else project.model_copy(update={"color": colors[project.id]})
            for project in self._projects
        ]

    def add_project(self, data: Mapping[str, Any]) -> Project:
        now = self._now()
        fields = {key: value for key, value in data.items() if key not in PROTECTED_PROJECT_FIELDS}
        fields.setdefault("start_date", self._clock().date().isoformat())
        try:
            project = Project.model_validate(
                {**fields, "id": generate_id(), "color": "", "created_at": now, "updated_at": now}
            )
        except ValidationError as exc:
            raise InvalidProjectError(str(exc)) from exc
        validate_project(project)
        self._projects.append(project)
        self.reassign_colors()
        logger.info("Created project %s (%s)", project.id, project.name)
        return self.require_project(project.id)

    def update_project(self, project_id: str, patch: Mapping[str, Any]) -> Project:
        current = self.require_project(project_id)
        changes = {key: value for key, value in patch.items() if key not in PROTECTED_PROJECT_FIELDS}
        try:
            updated = Project.model_validate({**current.model_dump(), **changes, "updated_at": self._now()})
        except ValidationError as exc:
            raise InvalidProjectError(str(exc)) from exc
        validate_project(updated)
        self._projects = [updated if project.id == project_id else project for project in self._projects]
        if updated.name != current.name:
            self.reassign_colors()
        return self.require_project(project_id)

    def delete_project(self, project_id: str) -> Project:
        project = self.require_project(project_id)
        self._projects = [item for item in self._projects if item.id != project_id]
        self.reassign_colors()
        logger.info("Deleted project %s (%s)", project.id, project.name)
        return project

    def _importable(self, records: Iterable[Project]) -> tuple[List[Project], int]:
        accepted: List[Project] = []
        skipped = 0
        for record in records:
            try:
                validate_project(record)
            except InvalidProjectError as exc:
                logger.warning("Skipping imported project: %s", exc.message)
                skipped += 1
                continue
            accepted.append(record)
        return accepted, skipped

    def _fresh_project(self, record: Project, taken: Collection[str] = ()) -> Project:
        now = self._now()
        known_ids = {project.id for project in self._projects} | set(taken)
        project_id = record.id if record.id and record.id not in known_ids else generate_id()
        return record.model_copy(
            update={
                "id": project_id,
                "color": "",
                "created_at": record.created_at or now,
                "updated_at": now,
            }
        )

    def plan_project_import(self, records: Iterable[Project]) -> ReconciliationPlan:
        accepted, _ = self._importable(records)
        return reconcile(accepted, self._projects, PROJECT_RULES, create=self._fresh_project)

    def import_projects(self, records: Iterable[Project], apply_updates: bool = True) -> ImportResult:
        accepted, skipped = self._importable(records)
        plan = reconcile(accepted, self._projects, PROJECT_RULES, create=self._fresh_project)
        now = self._now()
        if apply_updates:
            merged = {updated.id: updated.model_copy(update={"updated_at": now}) for _, updated, _ in plan.updates}
            self._projects = [merged.get(project.id, project) for project in self._projects]
        else:
            skipped += plan.updated
        self._projects.extend(plan.creates)
        if plan.creates or (apply_updates and plan.updates):
            self.reassign_colors()
        if apply_updates:
            result = plan.result(skipped=skipped)
        else:
            result = ImportResult(created=plan.created, updated=0, skipped=skipped)
        logger.info(
            "Imported projects: %d created, %d updated, %d skipped",
            result.created,
            result.updated,
            result.skipped,
        )
        return result

    # ------------------------------------------------------------------
    # Day entries
    # ------------------------------------------------------------------

    def create_or_update_day_entry(self, date: dt.date | str, patch: Mapping[str, Any]) -> DayEntry:
        key = date_key(date)
        if parse_date(key) is None:
            raise PreconditionError(f"Invalid date '{date}'")
        changes = {name: value for name, value in patch.items() if name in DAY_ENTRY_FIELDS}
        now = self._now()
        existing = self.get_entry(key)
        if existing is not None:
            entry = DayEntry.model_validate({**existing.model_dump(), **changes, "updated_at": now})
            self._entries = [entry if item.date == key else item for item in self._entries]
            return entry
        entry = DayEntry.model_validate({**changes, "date": key, "created_at": now, "updated_at": now})
        self._entries.append(entry)
        return entry

    def add_project_to_day(self, date: dt.date | str, project_id: str) -> DayProjectEntry:
        self.require_project(project_id)
        entry = self.get_entry(date)
        current = list(entry.projects) if entry else []
        for item in current:
            if item.project_id == project_id:
                return item
        added = DayProjectEntry(project_id=project_id)
        self.create_or_update_day_entry(date, {"projects": current + [added]})
        return added

    def _project_entries(self, date: dt.date | str, entry_id: str) -> tuple[List[DayProjectEntry], int]:
        entry = self.require_entry(date)
        items = list(entry.projects)
        for index, item in enumerate(items):
            if item.id == entry_id:
                return items, index
        raise NotFoundError(f"Project entry {entry_id} not found on {entry.date}")

    def get_project_entry(self, date: dt.date | str, entry_id: str) -> DayProjectEntry:
        items, index = self._project_entries(date, entry_id)
        return items[index]

    def update_project_in_day(
        self, date: dt.date | str, entry_id: str, patch: Mapping[str, Any]
    ) -> DayProjectEntry:
        items, index = self._project_entries(date, entry_id)
        changes = {key: value for key, value in patch.items() if key != "id"}
        items[index] = DayProjectEntry.model_validate({**items[index].model_dump(), **changes})
        self.create_or_update_day_entry(date, {"projects": items})
        return items[index]

    def remove_project_from_day(self, date: dt.date | str, entry_id: str) -> DayProjectEntry:
        items, index = self._project_entries(date, entry_id)
        removed = items.pop(index)
        self.create_or_update_day_entry(date, {"projects": items})
        return removed

    def reorder_projects_in_day(self, date: dt.date | str, from_index: int, to_index: int) -> DayEntry:
        entry = self.require_entry(date)
        items = list(entry.projects)
        count = len(items)
        if not (0 <= from_index < count and 0 <= to_index < count):
            raise PreconditionError(
                f"Cannot move project from position {from_index} to {to_index}; the day has {count} projects"
            )
        moved = items.pop(from_index)
        items.insert(to_index, moved)
        return self.create_or_update_day_entry(date, {"projects": items})

    def _resolve_day_projects(self, record: ImportedDayEntry, name_to_id: Mapping[str, str]) -> tuple[DayEntry, int]:
        known_ids = {project.id for project in self._projects}
        resolved: List[DayProjectEntry] = []
        dropped = 0
        for item in record.projects:
            project_id = name_to_id.get(normalize_name(item.project_name) or "")
            if not project_id and item.project_id in known_ids:
                project_id = item.project_id
            if not project_id:
                dropped += 1
                continue
            payload = item.model_dump(exclude={"project_name"})
            payload["project_id"] = project_id
            resolved.append(DayProjectEntry.model_validate(payload))
        payload = record.model_dump(exclude={"projects"})
        payload["projects"] = resolved
        return DayEntry.model_validate(payload), dropped

    def import_day_entries(
        self, records: Iterable[ImportedDayEntry], name_to_id: Optional[Mapping[str, str]] = None
    ) -> ImportResult:
        """Merge imported day entries; project references are resolved by name."""
        if name_to_id is None:
            name_to_id = self.project_name_map()
        lookup = {normalize_name(name) or "": project_id for name, project_id in name_to_id.items()}
        incoming: List[DayEntry] = []
        dropped = 0
        for record in records:
            if parse_date(record.date) is None:
                logger.warning("Skipping imported day entry with invalid date %r", record.date)
                continue
            entry, missing = self._resolve_day_projects(record, lookup)
            dropped += missing
            incoming.append(entry.model_copy(update={"date": date_key(entry.date)}))
        plan = reconcile(incoming, self._entries, DAY_ENTRY_RULES)
        for _, merged, _ in plan.updates:
            self.create_or_update_day_entry(merged.date, {name: getattr(merged, name) for name in DAY_ENTRY_FIELDS})
        for created in plan.creates:
            self.create_or_update_day_entry(created.date, {name: getattr(created, name) for name in DAY_ENTRY_FIELDS})
        if dropped:
            logger.warning("Dropped %d imported project entries with unknown projects", dropped)
        return plan.result(skipped=dropped)
