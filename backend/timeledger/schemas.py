from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Any, List, Optional

from typing_extensions import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

from .utils import generate_id


LocationType = Literal["office", "home"]
LOCATIONS = ("office", "home")


def _blank_if_none(value: Any) -> Any:
    return "" if value is None else value


def _iso_date(value: Any) -> Any:
    if isinstance(value, dt.datetime):
        return value.date().isoformat()
    if isinstance(value, dt.date):
        return value.isoformat()
    return value


class LedgerModel(BaseModel):
    """Base for persisted records; JSON keys are camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Ledger entities
# ---------------------------------------------------------------------------


class Task(LedgerModel):
    id: str = Field(default_factory=generate_id)
    name: str = ""
    description: str = ""
    external_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("externalId", "external_id", "dynamicsTaskId"),
        serialization_alias="externalId",
    )
    scheduled_start: Optional[str] = None
    scheduled_end: Optional[str] = None
    actual_start: Optional[str] = None
    actual_end: Optional[str] = None
    progress: float = 0
    effort: float = 0
    effort_completed: float = 0
    effort_remaining: float = 0

    @field_validator("name", "description", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Any:
        return _blank_if_none(value)


class ExternalRef(LedgerModel):
    """Identity and synced metadata of a project that originates elsewhere."""

    external_id: str = Field(
        validation_alias=AliasChoices("externalId", "external_id", "dynamicsId"),
        serialization_alias="externalId",
    )
    subject: str = ""
    status_code: Optional[int] = None
    state_code: Optional[int] = None
    scheduled_start: Optional[str] = None
    scheduled_end: Optional[str] = None
    actual_start: Optional[str] = None
    actual_end: Optional[str] = None
    effort: float = 0
    effort_completed: float = 0
    effort_remaining: float = 0
    progress: float = 0
    team_size: Optional[int] = None
    duration: Optional[float] = None
    hours_per_day: Optional[float] = None
    hours_per_week: Optional[float] = None
    project_manager_id: Optional[str] = None
    owner_id: Optional[str] = None
    customer_id: Optional[str] = None
    calendar_id: Optional[str] = None
    last_synced_at: Optional[str] = None


class Project(LedgerModel):
    id: str = Field(default_factory=generate_id)
    name: str = ""
    description: str = ""
    start_date: str = ""
    end_date: Optional[str] = None
    color: str = ""
    tasks: List[Task] = Field(default_factory=list)
    external_ref: Optional[ExternalRef] = Field(
        default=None,
        validation_alias=AliasChoices("externalRef", "external_ref", "dynamics"),
        serialization_alias="externalRef",
    )
    created_at: str = ""
    updated_at: str = ""

    @field_validator("name", "description", "start_date", "color", "created_at", "updated_at", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Any:
        return _blank_if_none(_iso_date(value))

    @field_validator("end_date", mode="before")
    @classmethod
    def _end(cls, value: Any) -> Any:
        value = _iso_date(value)
        return value or None

    @field_validator("tasks", mode="before")
    @classmethod
    def _tasks(cls, value: Any) -> Any:
        return value or []

    @property
    def external_id(self) -> Optional[str]:
        return self.external_ref.external_id if self.external_ref else None


class WorkSession(LedgerModel):
    id: str = Field(default_factory=generate_id)
    start: str = ""
    end: str = ""
    done_notes: str = ""
    todo_notes: str = ""
    task_id: Optional[str] = None
    task_name: Optional[str] = None

    @field_validator("start", "end", "done_notes", "todo_notes", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Any:
        return _blank_if_none(value)


class Break(LedgerModel):
    id: str = Field(default_factory=generate_id)
    start: str = ""
    end: str = ""

    @field_validator("start", "end", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Any:
        return _blank_if_none(value)


class AttendancePeriod(LedgerModel):
    id: str = Field(default_factory=generate_id)
    start: str = ""
    end: str = ""
    location: LocationType = "office"

    @field_validator("start", "end", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Any:
        return _blank_if_none(value)

    @field_validator("location", mode="before")
    @classmethod
    def _location(cls, value: Any) -> Any:
        return value if value in LOCATIONS else "office"


class DayProjectEntry(LedgerModel):
    id: str = Field(default_factory=generate_id)
    project_id: str = ""
    notes: str = ""
    hours_worked: float = 0
    work_sessions: List[WorkSession] = Field(default_factory=list)

    @field_validator("project_id", "notes", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Any:
        return _blank_if_none(value)

    @field_validator("hours_worked", mode="before")
    @classmethod
    def _hours(cls, value: Any) -> Any:
        return 0 if value in (None, "") else value

    @field_validator("work_sessions", mode="before")
    @classmethod
    def _sessions(cls, value: Any) -> Any:
        return value or []


class DayEntry(LedgerModel):
    id: str = Field(default_factory=generate_id)
    date: str
    clock_in: Optional[str] = None
    clock_out: Optional[str] = None
    lunch_start: Optional[str] = None
    lunch_end: Optional[str] = None
    breaks: List[Break] = Field(default_factory=list)
    attendance: List[AttendancePeriod] = Field(
        default_factory=list,
        validation_alias=AliasChoices("attendance", "locationBlocks"),
        serialization_alias="attendance",
    )
    schedule_notes: str = ""
    projects: List[DayProjectEntry] = Field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    @field_validator("date", mode="before")
    @classmethod
    def _date(cls, value: Any) -> Any:
        return _iso_date(value)

    @field_validator("clock_in", "clock_out", "lunch_start", "lunch_end", mode="before")
    @classmethod
    def _optional_time(cls, value: Any) -> Any:
        return value or None

    @field_validator("schedule_notes", "created_at", "updated_at", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Any:
        return _blank_if_none(value)

    @field_validator("breaks", "attendance", "projects", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> Any:
        return value or []


DAY_ENTRY_FIELDS = (
    "clock_in",
    "clock_out",
    "lunch_start",
    "lunch_end",
    "breaks",
    "attendance",
    "schedule_notes",
    "projects",
)


@dataclass(frozen=True)
class LedgerState:
    """Serialised (entries, projects) pair; the unit of undo and persistence."""

    entries_json: str
    projects_json: str


# ---------------------------------------------------------------------------
# Import records
# ---------------------------------------------------------------------------


class ImportedProjectEntry(DayProjectEntry):
    """Day-project entry whose project is referenced by name until resolved."""

    project_name: Optional[str] = None


class ImportedDayEntry(DayEntry):
    projects: List[ImportedProjectEntry] = Field(default_factory=list)


class ExternalProjectRecord(LedgerModel):
    """Generic project/task record handed over by an external system."""

    id: str
    subject: str = ""
    description: Optional[str] = None
    status_code: Optional[int] = None
    state_code: Optional[int] = None
    scheduled_start: Optional[str] = None
    scheduled_end: Optional[str] = None
    finish: Optional[str] = None
    actual_start: Optional[str] = None
    actual_end: Optional[str] = None
    effort: float = 0
    effort_completed: float = 0
    effort_remaining: float = 0
    progress: float = 0
    team_size: Optional[int] = None
    duration: Optional[float] = None
    hours_per_day: Optional[float] = None
    hours_per_week: Optional[float] = None
    project_manager_id: Optional[str] = None
    owner_id: Optional[str] = None
    customer_id: Optional[str] = None
    calendar_id: Optional[str] = None
    created_on: Optional[str] = None
    modified_on: Optional[str] = None
    tasks: List[Task] = Field(default_factory=list)


class ImportResult(BaseModel):
    created: int = 0
    updated: int = 0
    skipped: int = 0


class LedgerImportResponse(BaseModel):
    projects: ImportResult
    entries: ImportResult
    placeholders: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Outbound sync
# ---------------------------------------------------------------------------


class MergedTimeEntry(LedgerModel):
    date: str
    project_id: str
    project_name: str
    external_project_id: Optional[str] = None
    task_name: str = ""
    external_task_id: Optional[str] = None
    minutes: int = 0
    descriptions: List[str] = Field(default_factory=list)

    @computed_field
    @property
    def notes(self) -> str:
        return "; ".join(self.descriptions)


class SyncOutcome(BaseModel):
    """Result reported by the transport for one merged entry."""

    success: bool
    error: Optional[str] = None


class SyncResult(BaseModel):
    success: bool
    message: str
    created: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# HTTP requests / responses
# ---------------------------------------------------------------------------


class ProjectCreateRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(min_length=1)
    description: str = ""
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    tasks: List[Task] = Field(default_factory=list)
    external_ref: Optional[ExternalRef] = None


class ProjectUpdateRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    tasks: Optional[List[Task]] = None


class DayEntryUpdateRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    clock_in: Optional[str] = None
    clock_out: Optional[str] = None
    lunch_start: Optional[str] = None
    lunch_end: Optional[str] = None
    breaks: Optional[List[Break]] = None
    attendance: Optional[List[AttendancePeriod]] = None
    schedule_notes: Optional[str] = None


class DayProjectAddRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    project_id: str


class DayProjectUpdateRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    notes: Optional[str] = None
    hours_worked: Optional[float] = None
    work_sessions: Optional[List[WorkSession]] = None


class ReorderRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    from_index: int
    to_index: int


class TimeActionRequest(BaseModel):
    """Optional explicit wall-clock time; defaults to the current local time."""

    at: Optional[str] = None


class ClockInRequest(TimeActionRequest):
    location: LocationType = "office"


class SessionStartRequest(TimeActionRequest):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    task_id: Optional[str] = None


class ExternalImportRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    records: List[ExternalProjectRecord]
    dry_run: bool = False


class SyncPreviewRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    start_date: dt.date
    end_date: Optional[dt.date] = None


class SyncResultsRequest(BaseModel):
    entries: List[MergedTimeEntry]
    outcomes: List[SyncOutcome]


class HistoryResponse(BaseModel):
    can_undo: bool
    can_redo: bool
    undo_label: Optional[str] = None
    redo_label: Optional[str] = None
    undo_depth: int
    redo_depth: int
    pending: bool


class SettingsResponse(BaseModel):
    environment: str
    timezone: str
    storage: str
    round_to_five: bool
    daily_quota_hours: float
    crm_org_url: str
    crm_client_id: str
    crm_tenant_id: str


class SettingsUpdateRequest(BaseModel):
    round_to_five: Optional[bool] = None
    daily_quota_hours: Optional[float] = Field(default=None, gt=0)
    crm_org_url: Optional[str] = None
    crm_client_id: Optional[str] = None
    crm_tenant_id: Optional[str] = None
