"""Versioned JSON export document and its import counterpart.

Exported entries reference projects by name, never by id, so a document can
be imported into a different ledger. Only closed intervals are exported.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Union

from pydantic import Field, ValidationError, field_validator
from typing_extensions import Literal

from .errors import ImportFormatError
from .intervals import duration, format_minutes, hours_from_minutes
from .schemas import (
    AttendancePeriod,
    Break,
    DayEntry,
    ImportedDayEntry,
    ImportedProjectEntry,
    LedgerModel,
    LocationType,
    Project,
    WorkSession,
)
from .stats import day_totals
from .utils import WEEKDAY_NAMES, isoformat_utc, long_date_label, month_bounds, month_label, normalize_name, parse_date, utcnow

logger = logging.getLogger(__name__)

EXPORT_VERSION = 1
UNKNOWN_PROJECT = "Unknown Project"

ExportType = Literal["day", "month", "full"]


class ExportedInterval(LedgerModel):
    start: str = ""
    end: str = ""

    @field_validator("start", "end", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Any:
        return "" if value is None else value


class ExportedAttendance(ExportedInterval):
    location: LocationType = "office"

    @field_validator("location", mode="before")
    @classmethod
    def _location(cls, value: Any) -> Any:
        return value if value in ("office", "home") else "office"


class ExportedSession(ExportedInterval):
    duration_minutes: int = 0
    done_notes: str = ""
    todo_notes: str = ""
    task_name: Optional[str] = None


class ExportedProject(LedgerModel):
    name: str = UNKNOWN_PROJECT
    hours_worked: float = 0
    notes: str = ""
    work_sessions: List[ExportedSession] = Field(default_factory=list)


class ExportedDayEntry(LedgerModel):
    date: str
    day_of_week: str = ""
    clock_in: Optional[str] = None
    clock_out: Optional[str] = None
    lunch_start: Optional[str] = None
    lunch_end: Optional[str] = None
    breaks: List[ExportedInterval] = Field(default_factory=list)
    attendance: Optional[List[ExportedAttendance]] = None
    hours_worked: Optional[str] = None
    hours_in_office: Optional[str] = None
    schedule_notes: str = ""
    projects: List[ExportedProject] = Field(default_factory=list)

    @field_validator("schedule_notes", mode="before")
    @classmethod
    def _notes(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("breaks", "projects", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> Any:
        return value or []


class ProjectSummary(LedgerModel):
    name: str
    total_hours: float
    total_minutes: int = 0


class ExportSummary(LedgerModel):
    total_days_worked: int = 0
    total_hours_worked: str = "0h 0m"
    total_hours_in_office: str = "0h 0m"
    total_work_minutes: int = 0
    total_office_minutes: int = 0
    projects_summary: List[ProjectSummary] = Field(default_factory=list)


class ExportDocument(LedgerModel):
    version: int = EXPORT_VERSION
    exported_at: str
    export_type: ExportType
    period: str = ""
    summary: ExportSummary = Field(default_factory=ExportSummary)
    entries: List[ExportedDayEntry]
    projects: Optional[List[Project]] = None

    def to_json_dict(self) -> Dict[str, Any]:
        payload = super().to_json_dict()
        if self.projects is None:
            payload.pop("projects", None)
        return payload


def _exportable(entry: DayEntry) -> bool:
    return bool(entry.clock_in or entry.projects or entry.schedule_notes or entry.attendance)


def _closed(start: str, end: str) -> bool:
    return bool(start and end)


def _transform_entry(entry: DayEntry, names: Dict[str, str]) -> ExportedDayEntry:
    totals = day_totals(entry)
    day = parse_date(entry.date)
    projects = []
    for item in entry.projects:
        sessions = [
            ExportedSession(
                start=session.start,
                end=session.end,
                duration_minutes=duration(session.start, session.end),
                done_notes=session.done_notes,
                todo_notes=session.todo_notes,
                task_name=session.task_name,
            )
            for session in item.work_sessions
            if _closed(session.start, session.end)
        ]
        projects.append(
            ExportedProject(
                name=names.get(item.project_id, UNKNOWN_PROJECT),
                hours_worked=item.hours_worked,
                notes=item.notes,
                work_sessions=sessions,
            )
        )
    return ExportedDayEntry(
        date=entry.date,
        day_of_week=WEEKDAY_NAMES[day.weekday()] if day else "",
        clock_in=entry.clock_in,
        clock_out=entry.clock_out,
        lunch_start=entry.lunch_start,
        lunch_end=entry.lunch_end,
        breaks=[ExportedInterval(start=item.start, end=item.end) for item in entry.breaks if _closed(item.start, item.end)],
        attendance=[
            ExportedAttendance(start=period.start, end=period.end, location=period.location)
            for period in entry.attendance
            if _closed(period.start, period.end)
        ],
        hours_worked=format_minutes(totals.work_minutes) if totals.work_minutes > 0 else None,
        hours_in_office=format_minutes(totals.attendance_minutes) if totals.attendance_minutes > 0 else None,
        schedule_notes=entry.schedule_notes,
        projects=projects,
    )


def _build_document(
    export_type: ExportType,
    period: str,
    entries: Iterable[DayEntry],
    projects: Sequence[Project],
    now: Optional[dt.datetime],
    include_projects: bool = False,
) -> ExportDocument:
    names = {project.id: project.name for project in projects}
    exported: List[ExportedDayEntry] = []
    work_total = 0
    office_total = 0
    days_worked = 0
    per_project: Dict[str, int] = defaultdict(int)
    for entry in entries:
        if not _exportable(entry):
            continue
        exported.append(_transform_entry(entry, names))
        totals = day_totals(entry)
        work_total += totals.work_minutes
        office_total += totals.attendance_minutes
        if totals.work_minutes > 0 or totals.attendance_minutes > 0:
            days_worked += 1
        for item in entry.projects:
            name = names.get(item.project_id, UNKNOWN_PROJECT)
            per_project[name] += sum(
                duration(session.start, session.end) for session in item.work_sessions
            )
    summary = ExportSummary(
        total_days_worked=days_worked,
        total_hours_worked=format_minutes(work_total),
        total_hours_in_office=format_minutes(office_total),
        total_work_minutes=work_total,
        total_office_minutes=office_total,
        projects_summary=sorted(
            (
                ProjectSummary(name=name, total_hours=hours_from_minutes(minutes), total_minutes=minutes)
                for name, minutes in per_project.items()
            ),
            key=lambda item: (-item.total_minutes, item.name.casefold()),
        ),
    )
    return ExportDocument(
        exported_at=isoformat_utc(now or utcnow()),
        export_type=export_type,
        period=period,
        summary=summary,
        entries=exported,
        projects=list(projects) if include_projects else None,
    )


def export_day(
    date: dt.date,
    entry: Optional[DayEntry],
    projects: Sequence[Project],
    now: Optional[dt.datetime] = None,
) -> ExportDocument:
    return _build_document("day", long_date_label(date), [entry] if entry else [], projects, now)


def export_month(
    date: dt.date,
    entries: Iterable[DayEntry],
    projects: Sequence[Project],
    now: Optional[dt.datetime] = None,
) -> ExportDocument:
    first, last = month_bounds(date)
    in_month = sorted(
        (entry for entry in entries if first.isoformat() <= entry.date <= last.isoformat()),
        key=lambda entry: entry.date,
    )
    return _build_document("month", month_label(first), in_month, projects, now)


def export_all(
    entries: Iterable[DayEntry],
    projects: Sequence[Project],
    now: Optional[dt.datetime] = None,
) -> ExportDocument:
    ordered = sorted(entries, key=lambda entry: entry.date)
    document = _build_document("full", "", ordered, projects, now, include_projects=True)
    first = document.entries[0].date if document.entries else "N/A"
    last = document.entries[-1].date if document.entries else "N/A"
    document.period = f"{first} to {last}"
    return document


@dataclass
class ImportBundle:
    entries: List[ImportedDayEntry] = field(default_factory=list)
    projects: List[Project] = field(default_factory=list)

    def placeholder_projects(self, known_names: Set[str]) -> List[Project]:
        """Projects to create for names the entries use but neither ledger knows."""
        declared = {normalize_name(project.name) for project in self.projects}
        placeholders: List[Project] = []
        seen: Set[str] = set()
        for entry in sorted(self.entries, key=lambda item: item.date):
            for item in entry.projects:
                key = normalize_name(item.project_name)
                if not key or item.project_name == UNKNOWN_PROJECT:
                    continue
                if key in declared or key in known_names or key in seen:
                    continue
                seen.add(key)
                placeholders.append(Project(name=str(item.project_name).strip(), start_date=entry.date))
        return placeholders


def _import_entry(exported: ExportedDayEntry) -> ImportedDayEntry:
    attendance = [
        AttendancePeriod(start=period.start, end=period.end, location=period.location)
        for period in exported.attendance or []
    ]
    legacy = not exported.attendance and bool(exported.clock_in)
    return ImportedDayEntry(
        date=exported.date,
        clock_in=exported.clock_in if legacy else None,
        clock_out=exported.clock_out if legacy else None,
        lunch_start=exported.lunch_start,
        lunch_end=exported.lunch_end,
        breaks=[Break(start=item.start, end=item.end) for item in exported.breaks],
        attendance=attendance,
        schedule_notes=exported.schedule_notes,
        projects=[
            ImportedProjectEntry(
                project_id="",
                project_name=item.name,
                notes=item.notes,
                hours_worked=item.hours_worked,
                work_sessions=[
                    WorkSession(
                        start=session.start,
                        end=session.end,
                        done_notes=session.done_notes,
                        todo_notes=session.todo_notes,
                        task_name=session.task_name,
                    )
                    for session in item.work_sessions
                ],
            )
            for item in exported.projects
        ],
    )


def parse_export_document(source: Union[str, bytes, Dict[str, Any]]) -> ImportBundle:
    """Turn an export document back into importable records.

    Raises :class:`ImportFormatError` when the document is not valid JSON or
    lacks the export markers.
    """
    if isinstance(source, (str, bytes)):
        try:
            payload = json.loads(source)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ImportFormatError("Import file is not valid JSON") from exc
    else:
        payload = source
    if not isinstance(payload, dict) or not payload.get("exportedAt") or not isinstance(payload.get("entries"), list):
        raise ImportFormatError("Invalid file format: expected a TimeLedger export document")
    try:
        document = ExportDocument.model_validate(payload)
    except ValidationError as exc:
        raise ImportFormatError(f"Invalid export document: {exc.errors()[0].get('msg')}") from exc
    if document.version > EXPORT_VERSION:
        logger.warning("Importing export document version %s newer than %s", document.version, EXPORT_VERSION)
    entries = [_import_entry(entry) for entry in document.entries if parse_date(entry.date)]
    return ImportBundle(entries=entries, projects=list(document.projects or []))
