from __future__ import annotations

import datetime as dt

from timeledger import sync
from timeledger.schemas import (
    DayEntry,
    DayProjectEntry,
    ExternalProjectRecord,
    ExternalRef,
    MergedTimeEntry,
    Project,
    SyncOutcome,
    Task,
    WorkSession,
)

NOW = dt.datetime(2024, 1, 10, 12, 0, tzinfo=dt.timezone.utc)


def test_map_external_project_dates_and_reference() -> None:
    record = ExternalProjectRecord.model_validate(
        {
            "id": "ext-1",
            "subject": "Migration",
            "createdOn": "2023-12-01T08:00:00Z",
            "scheduledEnd": "2024-03-31T00:00:00Z",
            "actualEnd": "2024-04-15T00:00:00Z",
            "progress": 40,
            "tasks": [{"name": "Cutover", "externalId": "t-1"}],
        }
    )

    project = sync.map_external_project(record, NOW)

    assert project.name == "Migration"
    assert project.start_date == "2023-12-01"
    assert project.end_date == "2024-03-31"
    assert project.external_id == "ext-1"
    assert project.external_ref.progress == 40
    assert project.external_ref.last_synced_at == "2024-01-10T12:00:00Z"
    assert project.tasks[0].external_id == "t-1"


def test_week_dates_run_monday_to_sunday() -> None:
    dates = sync.week_dates(dt.date(2024, 1, 10))
    assert dates[0] == "2024-01-08"
    assert dates[-1] == "2024-01-14"
    assert len(dates) == 7


def test_build_merged_entries_groups_by_date_project_and_task() -> None:
    review = Task(name="Review", external_id="t-9")
    projects = [
        Project(id="p1", name="beta", external_ref=ExternalRef(external_id="ext-b"), tasks=[review]),
        Project(id="p2", name="Alpha"),
    ]
    entries = [
        DayEntry(
            date="2024-01-08",
            projects=[
                DayProjectEntry(
                    project_id="p1",
                    work_sessions=[
                        WorkSession(start="09:00", end="10:00", task_name="Review", done_notes=" Read PR "),
                        WorkSession(start="11:00", end="11:30", task_name="Review", done_notes=""),
                        WorkSession(start="12:00", end="12:15"),
                        WorkSession(start="13:00", end=""),
                    ],
                ),
                DayProjectEntry(project_id="p2", work_sessions=[WorkSession(start="14:00", end="15:00")]),
            ],
        ),
        DayEntry(
            date="2024-01-20",
            projects=[DayProjectEntry(project_id="p2", work_sessions=[WorkSession(start="09:00", end="10:00")])],
        ),
    ]

    merged = sync.build_merged_entries(entries, projects, sync.week_dates(dt.date(2024, 1, 10)))

    assert [(item.project_name, item.task_name, item.minutes) for item in merged] == [
        ("Alpha", "", 60),
        ("beta", "Review", 90),
        ("beta", "", 15),
    ]
    review_entry = merged[1]
    assert review_entry.external_project_id == "ext-b"
    assert review_entry.external_task_id == "t-9"
    assert review_entry.notes == "Read PR"
    assert review_entry.to_json_dict()["notes"] == "Read PR"


def _merged(name: str) -> MergedTimeEntry:
    return MergedTimeEntry(date="2024-01-08", project_id=name, project_name=name, minutes=30)


def test_summarize_sync_with_nothing_to_send() -> None:
    result = sync.summarize_sync([], [])
    assert not result.success
    assert result.message == "No time entries to sync"


def test_summarize_sync_all_created() -> None:
    result = sync.summarize_sync([_merged("A")], [SyncOutcome(success=True)])
    assert result.success
    assert result.message == "Successfully created 1 time entry"


def test_summarize_sync_partial_failure() -> None:
    result = sync.summarize_sync(
        [_merged("A"), _merged("B"), _merged("C")],
        [SyncOutcome(success=True), SyncOutcome(success=False, error="Forbidden")],
    )

    assert result.success
    assert (result.created, result.failed) == (1, 2)
    assert result.message == "Created 1, failed 2 of 3 entries"
    assert result.errors == ["B (2024-01-08): Forbidden", "C (2024-01-08): No result reported"]


def test_summarize_sync_total_failure() -> None:
    result = sync.summarize_sync([_merged("A")], [SyncOutcome(success=False)])
    assert not result.success
    assert result.errors == ["A (2024-01-08): Unknown error"]
