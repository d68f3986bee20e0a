"""Mapping to and from an external project system.

Inbound, external project records are mapped onto :class:`Project` values and
then reconciled like any other import. Outbound, completed work sessions are
merged into one record per (date, project, task). Transport and
authentication belong to the caller; only their per-record outcomes come back
here to be summarised.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections import OrderedDict
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .intervals import duration
from .schemas import DayEntry, ExternalProjectRecord, ExternalRef, MergedTimeEntry, Project, SyncOutcome, SyncResult
from .utils import isoformat_utc, iter_days, parse_date, utcnow, week_start

logger = logging.getLogger(__name__)

ProjectMapper = Callable[[ExternalProjectRecord], Project]


def _iso_day(value: Optional[str]) -> Optional[str]:
    parsed = parse_date(value)
    return parsed.isoformat() if parsed else None


def map_external_project(record: ExternalProjectRecord, now: Optional[dt.datetime] = None) -> Project:
    """Default mapping from the generic external record onto a project."""
    moment = now or utcnow()
    start = _iso_day(record.scheduled_start or record.created_on) or moment.date().isoformat()
    end = _iso_day(record.finish or record.scheduled_end or record.actual_end)
    return Project(
        name=record.subject,
        description=record.description or "",
        start_date=start,
        end_date=end,
        tasks=record.tasks,
        external_ref=ExternalRef(
            external_id=record.id,
            subject=record.subject,
            status_code=record.status_code,
            state_code=record.state_code,
            scheduled_start=record.scheduled_start,
            scheduled_end=record.scheduled_end or record.finish,
            actual_start=record.actual_start,
            actual_end=record.actual_end,
            effort=record.effort,
            effort_completed=record.effort_completed,
            effort_remaining=record.effort_remaining,
            progress=record.progress,
            team_size=record.team_size,
            duration=record.duration,
            hours_per_day=record.hours_per_day,
            hours_per_week=record.hours_per_week,
            project_manager_id=record.project_manager_id,
            owner_id=record.owner_id,
            customer_id=record.customer_id,
            calendar_id=record.calendar_id,
            last_synced_at=isoformat_utc(moment),
        ),
    )


def map_external_projects(
    records: Iterable[ExternalProjectRecord], mapper: Optional[ProjectMapper] = None
) -> List[Project]:
    convert = mapper or map_external_project
    return [convert(record) for record in records]


def week_dates(reference: dt.date) -> List[str]:
    start = week_start(reference)
    return [day.isoformat() for day in iter_days(start, start + dt.timedelta(days=6))]


def dates_between(start: dt.date, end: dt.date) -> List[str]:
    return [day.isoformat() for day in iter_days(start, end)]


def build_merged_entries(
    entries: Sequence[DayEntry], projects: Sequence[Project], dates: Iterable[str]
) -> List[MergedTimeEntry]:
    """Merge completed sessions per (date, project, task), sorted by date then project name."""
    projects_by_id = {project.id: project for project in projects}
    entries_by_date = {entry.date: entry for entry in entries}
    grouped: "OrderedDict[Tuple[str, str, str], MergedTimeEntry]" = OrderedDict()

    for date in dates:
        entry = entries_by_date.get(date)
        if entry is None:
            continue
        for item in entry.projects:
            project = projects_by_id.get(item.project_id)
            for session in item.work_sessions:
                minutes = duration(session.start, session.end)
                if minutes <= 0:
                    continue
                task_name = session.task_name or ""
                key = (date, item.project_id, task_name)
                merged = grouped.get(key)
                if merged is None:
                    task = None
                    if project is not None:
                        task = next((task for task in project.tasks if task.name == task_name), None)
                    merged = MergedTimeEntry(
                        date=date,
                        project_id=item.project_id,
                        project_name=project.name if project else "Unknown",
                        external_project_id=project.external_id if project else None,
                        task_name=task_name,
                        external_task_id=task.external_id if task else None,
                    )
                    grouped[key] = merged
                merged.minutes += minutes
                note = session.done_notes.strip()
                if note:
                    merged.descriptions.append(note)

    return sorted(grouped.values(), key=lambda merged: (merged.date, merged.project_name.casefold()))


def summarize_sync(entries: Sequence[MergedTimeEntry], outcomes: Sequence[SyncOutcome]) -> SyncResult:
    """Fold per-entry transport outcomes into one result; never raises."""
    if not entries:
        return SyncResult(success=False, message="No time entries to sync")
    created = 0
    failed = 0
    errors: List[str] = []
    for index, entry in enumerate(entries):
        outcome = outcomes[index] if index < len(outcomes) else SyncOutcome(success=False, error="No result reported")
        if outcome.success:
            created += 1
            continue
        failed += 1
        errors.append(f"{entry.project_name} ({entry.date}): {outcome.error or 'Unknown error'}")
    if failed:
        logger.warning("Sync finished with %d failures out of %d entries", failed, len(entries))
    if failed == 0:
        noun = "entry" if created == 1 else "entries"
        return SyncResult(
            success=True,
            message=f"Successfully created {created} time {noun}",
            created=created,
            failed=failed,
            errors=errors,
        )
    return SyncResult(
        success=created > 0,
        message=f"Created {created}, failed {failed} of {len(entries)} entries",
        created=created,
        failed=failed,
        errors=errors,
    )
