from __future__ import annotations

import asyncio
import contextlib
import datetime as dt
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .errors import ImportFormatError, InvalidProjectError, LedgerError, NotFoundError, PreconditionError
from .live import LiveDaySummary, LiveTicker
from .persistence import build_store
from .schemas import (
    ClockInRequest,
    DayEntry,
    DayEntryUpdateRequest,
    DayProjectAddRequest,
    DayProjectEntry,
    DayProjectUpdateRequest,
    ExternalImportRequest,
    HistoryResponse,
    ImportResult,
    LedgerImportResponse,
    MergedTimeEntry,
    Project,
    ProjectCreateRequest,
    ProjectUpdateRequest,
    ReorderRequest,
    SessionStartRequest,
    SettingsResponse,
    SettingsUpdateRequest,
    SyncPreviewRequest,
    SyncResult,
    SyncResultsRequest,
    TimeActionRequest,
)
from .services import Ledger

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    PreconditionError: status.HTTP_409_CONFLICT,
    InvalidProjectError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ImportFormatError: status.HTTP_400_BAD_REQUEST,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    ticker = LiveTicker(app.state.ledger, settings.live_refresh_seconds)
    task = asyncio.create_task(ticker.run())
    logger.info("Live ticker started (every %.1fs)", ticker.interval)
    yield
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


ledger = Ledger(build_store(settings), settings)

app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.state.ledger = ledger
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


def get_ledger(request: Request) -> Ledger:
    return request.app.state.ledger


def _at(payload: Optional[TimeActionRequest]) -> Optional[str]:
    return payload.at if payload else None


def _settings_response(ledger: Ledger, snapshot: Dict[str, Any]) -> SettingsResponse:
    return SettingsResponse(
        environment=ledger.config.environment,
        timezone=ledger.config.timezone,
        storage=ledger.config.storage_backend,
        round_to_five=snapshot["round_to_five"],
        daily_quota_hours=snapshot["daily_quota_hours"],
        crm_org_url=snapshot["crm_org_url"],
        crm_client_id=snapshot["crm_client_id"],
        crm_tenant_id=snapshot["crm_tenant_id"],
    )


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/projects", response_model=list[Project])
def projects_list(ledger: Ledger = Depends(get_ledger)) -> list[Project]:
    return ledger.list_projects()


@app.post("/projects", response_model=Project, status_code=status.HTTP_201_CREATED)
def projects_create(payload: ProjectCreateRequest, ledger: Ledger = Depends(get_ledger)) -> Project:
    return ledger.create_project(payload.model_dump(exclude_none=True))


@app.post("/projects/import", response_model=ImportResult)
def projects_import(payload: ExternalImportRequest, ledger: Ledger = Depends(get_ledger)) -> ImportResult:
    return ledger.import_external(payload.records, dry_run=payload.dry_run)


@app.get("/projects/{project_id}", response_model=Project)
def projects_get(project_id: str, ledger: Ledger = Depends(get_ledger)) -> Project:
    return ledger.get_project(project_id)


@app.patch("/projects/{project_id}", response_model=Project)
def projects_update(
    project_id: str, payload: ProjectUpdateRequest, ledger: Ledger = Depends(get_ledger)
) -> Project:
    return ledger.update_project(project_id, payload.model_dump(exclude_unset=True))


@app.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def projects_delete(project_id: str, ledger: Ledger = Depends(get_ledger)) -> Response:
    ledger.delete_project(project_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/projects/{project_id}/stats")
def projects_stats(project_id: str, ledger: Ledger = Depends(get_ledger)):
    return ledger.project_statistics(project_id)


@app.get("/days", response_model=list[DayEntry])
def days_list(
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
    ledger: Ledger = Depends(get_ledger),
) -> list[DayEntry]:
    if start and end and end < start:
        raise HTTPException(status_code=400, detail="Invalid range")
    return ledger.list_days(start, end)


@app.get("/days/{day}", response_model=DayEntry)
def days_get(day: dt.date, ledger: Ledger = Depends(get_ledger)) -> DayEntry:
    entry = ledger.get_day(day)
    if entry is None:
        raise HTTPException(status_code=404, detail="No entry for this day")
    return entry


@app.patch("/days/{day}", response_model=DayEntry)
def days_update(day: dt.date, payload: DayEntryUpdateRequest, ledger: Ledger = Depends(get_ledger)) -> DayEntry:
    return ledger.update_day(day, payload.model_dump(exclude_unset=True))


@app.post("/days/{day}/projects", response_model=DayProjectEntry, status_code=status.HTTP_201_CREATED)
def days_add_project(
    day: dt.date, payload: DayProjectAddRequest, ledger: Ledger = Depends(get_ledger)
) -> DayProjectEntry:
    return ledger.add_project_to_day(day, payload.project_id)


@app.post("/days/{day}/projects/reorder", response_model=DayEntry)
def days_reorder_projects(day: dt.date, payload: ReorderRequest, ledger: Ledger = Depends(get_ledger)) -> DayEntry:
    return ledger.reorder_projects(day, payload.from_index, payload.to_index)


@app.patch("/days/{day}/projects/{entry_id}", response_model=DayProjectEntry)
def days_update_project(
    day: dt.date,
    entry_id: str,
    payload: DayProjectUpdateRequest,
    ledger: Ledger = Depends(get_ledger),
) -> DayProjectEntry:
    return ledger.update_project_in_day(day, entry_id, payload.model_dump(exclude_unset=True))


@app.delete("/days/{day}/projects/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def days_remove_project(day: dt.date, entry_id: str, ledger: Ledger = Depends(get_ledger)) -> Response:
    ledger.remove_project_from_day(day, entry_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/days/{day}/projects/{entry_id}/sessions/start", response_model=DayProjectEntry)
def days_start_session(
    day: dt.date,
    entry_id: str,
    payload: Optional[SessionStartRequest] = None,
    ledger: Ledger = Depends(get_ledger),
) -> DayProjectEntry:
    task_id = payload.task_id if payload else None
    return ledger.start_session(day, entry_id, _at(payload), task_id)


@app.post("/days/{day}/projects/{entry_id}/sessions/stop", response_model=DayProjectEntry)
def days_stop_session(
    day: dt.date,
    entry_id: str,
    payload: Optional[TimeActionRequest] = None,
    ledger: Ledger = Depends(get_ledger),
) -> DayProjectEntry:
    return ledger.end_session(day, entry_id, _at(payload))


@app.post("/days/{day}/clock-in", response_model=DayEntry)
def days_clock_in(
    day: dt.date, payload: Optional[ClockInRequest] = None, ledger: Ledger = Depends(get_ledger)
) -> DayEntry:
    location = payload.location if payload else "office"
    return ledger.clock_in(day, location, _at(payload))


@app.post("/days/{day}/clock-out", response_model=DayEntry)
def days_clock_out(
    day: dt.date, payload: Optional[TimeActionRequest] = None, ledger: Ledger = Depends(get_ledger)
) -> DayEntry:
    return ledger.clock_out(day, _at(payload))


@app.post("/days/{day}/switch-location", response_model=DayEntry)
def days_switch_location(
    day: dt.date, payload: Optional[TimeActionRequest] = None, ledger: Ledger = Depends(get_ledger)
) -> DayEntry:
    return ledger.switch_location(day, _at(payload))


@app.put("/days/{day}/times/{field}", response_model=DayEntry)
def days_set_time(
    day: dt.date,
    field: str,
    payload: Optional[TimeActionRequest] = None,
    ledger: Ledger = Depends(get_ledger),
) -> DayEntry:
    return ledger.set_time(day, field, _at(payload))


@app.post("/days/{day}/breaks/start", response_model=DayEntry)
def days_start_break(
    day: dt.date, payload: Optional[TimeActionRequest] = None, ledger: Ledger = Depends(get_ledger)
) -> DayEntry:
    return ledger.start_break(day, _at(payload))


@app.post("/days/{day}/breaks/end", response_model=DayEntry)
def days_end_break(
    day: dt.date, payload: Optional[TimeActionRequest] = None, ledger: Ledger = Depends(get_ledger)
) -> DayEntry:
    return ledger.end_break(day, _at(payload))


@app.post("/days/{day}/round", response_model=DayEntry)
def days_round(day: dt.date, ledger: Ledger = Depends(get_ledger)) -> DayEntry:
    return ledger.round_day(day)


@app.get("/days/{day}/live")
def days_live(day: dt.date, ledger: Ledger = Depends(get_ledger)) -> LiveDaySummary:
    return ledger.live_day(day)


@app.get("/live")
def live_status(ledger: Ledger = Depends(get_ledger)) -> LiveDaySummary:
    return ledger.live_status()


@app.get("/stats")
def stats(week_of: Optional[dt.date] = None, ledger: Ledger = Depends(get_ledger)):
    return ledger.statistics(week_of)


@app.get("/history", response_model=HistoryResponse)
def history_state(ledger: Ledger = Depends(get_ledger)) -> HistoryResponse:
    return ledger.history_state()


@app.post("/history/undo", response_model=HistoryResponse)
def history_undo(ledger: Ledger = Depends(get_ledger)) -> HistoryResponse:
    if ledger.undo() is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Nothing to undo")
    return ledger.history_state()


@app.post("/history/redo", response_model=HistoryResponse)
def history_redo(ledger: Ledger = Depends(get_ledger)) -> HistoryResponse:
    if ledger.redo() is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Nothing to redo")
    return ledger.history_state()


@app.post("/history/flush", response_model=HistoryResponse)
def history_flush(ledger: Ledger = Depends(get_ledger)) -> HistoryResponse:
    ledger.flush_history()
    return ledger.history_state()


@app.get("/exports/day/{day}")
def exports_day(day: dt.date, ledger: Ledger = Depends(get_ledger)) -> JSONResponse:
    return JSONResponse(ledger.export_day(day).to_json_dict())


@app.get("/exports/month/{day}")
def exports_month(day: dt.date, ledger: Ledger = Depends(get_ledger)) -> JSONResponse:
    return JSONResponse(ledger.export_month(day).to_json_dict())


@app.get("/exports/full")
def exports_full(ledger: Ledger = Depends(get_ledger)) -> JSONResponse:
    return JSONResponse(ledger.export_all().to_json_dict())


@app.post("/imports", response_model=LedgerImportResponse)
def imports(document: Dict[str, Any] = Body(...), ledger: Ledger = Depends(get_ledger)) -> LedgerImportResponse:
    return ledger.import_document(document)


@app.post("/sync/preview", response_model=list[MergedTimeEntry])
def sync_preview(payload: SyncPreviewRequest, ledger: Ledger = Depends(get_ledger)) -> list[MergedTimeEntry]:
    return ledger.sync_preview(payload.start_date, payload.end_date)


@app.post("/sync/results", response_model=SyncResult)
def sync_results(payload: SyncResultsRequest, ledger: Ledger = Depends(get_ledger)) -> SyncResult:
    return ledger.record_sync_results(payload.entries, payload.outcomes)


@app.get("/settings", response_model=SettingsResponse)
def read_settings(ledger: Ledger = Depends(get_ledger)) -> SettingsResponse:
    return _settings_response(ledger, ledger.settings_snapshot())


@app.put("/settings", response_model=SettingsResponse)
def write_settings(payload: SettingsUpdateRequest, ledger: Ledger = Depends(get_ledger)) -> SettingsResponse:
    updates = payload.model_dump(exclude_unset=True)
    return _settings_response(ledger, ledger.update_settings(updates))
