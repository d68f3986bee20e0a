from __future__ import annotations

import datetime as dt
import json

import pytest

from timeledger import exports, stats
from timeledger.errors import ImportFormatError
from timeledger.schemas import AttendancePeriod, DayEntry, DayProjectEntry, Project, WorkSession
from timeledger.store import EntityStore

NOW = dt.datetime(2024, 1, 10, 12, 0, tzinfo=dt.timezone.utc)


@pytest.fixture()
def filled_store(store: EntityStore) -> EntityStore:
    alpha = store.add_project({"name": "Alpha"})
    beta = store.add_project({"name": "Beta"})
    store.create_or_update_day_entry(
        "2024-01-08",
        {
            "attendance": [AttendancePeriod(start="08:00", end="16:00")],
            "projects": [
                DayProjectEntry(
                    project_id=alpha.id,
                    notes="Sprint work",
                    work_sessions=[
                        WorkSession(start="08:00", end="10:00", done_notes="Specs"),
                        WorkSession(start="15:00", end=""),
                    ],
                ),
                DayProjectEntry(project_id=beta.id, work_sessions=[WorkSession(start="10:00", end="11:30")]),
            ],
        },
    )
    store.create_or_update_day_entry("2024-01-09", {"clock_in": "09:00", "clock_out": "12:00"})
    store.create_or_update_day_entry("2024-02-01", {"schedule_notes": "Planning"})
    store.create_or_update_day_entry("2024-02-02", {})
    return store


def test_export_day_drops_open_intervals(filled_store: EntityStore) -> None:
    document = exports.export_day(
        dt.date(2024, 1, 8), filled_store.get_entry("2024-01-08"), filled_store.projects, NOW
    )

    payload = document.to_json_dict()
    assert payload["exportType"] == "day"
    assert payload["period"] == "January 8, 2024"
    assert payload["exportedAt"] == "2024-01-10T12:00:00Z"
    assert "projects" not in payload
    day = payload["entries"][0]
    assert day["dayOfWeek"] == "Monday"
    assert day["hoursWorked"] == "3h 30m"
    alpha = day["projects"][0]
    assert alpha["name"] == "Alpha"
    assert [(session["start"], session["end"]) for session in alpha["workSessions"]] == [("08:00", "10:00")]
    assert alpha["workSessions"][0]["durationMinutes"] == 120
    assert payload["summary"]["projectsSummary"] == [
        {"name": "Alpha", "totalHours": 2.0, "totalMinutes": 120},
        {"name": "Beta", "totalHours": 1.5, "totalMinutes": 90},
    ]


def test_export_month_only_includes_that_month(filled_store: EntityStore) -> None:
    document = exports.export_month(dt.date(2024, 1, 20), filled_store.entries, filled_store.projects, NOW)

    assert document.period == "January 2024"
    assert [entry.date for entry in document.entries] == ["2024-01-08", "2024-01-09"]
    assert document.summary.total_days_worked == 2
    assert document.summary.total_work_minutes == 210


def test_export_all_skips_empty_days_and_includes_projects(filled_store: EntityStore) -> None:
    document = exports.export_all(filled_store.entries, filled_store.projects, NOW)

    assert document.export_type == "full"
    assert document.period == "2024-01-08 to 2024-02-01"
    assert "2024-02-02" not in [entry.date for entry in document.entries]
    assert sorted(project.name for project in document.projects) == ["Alpha", "Beta"]


def test_export_all_of_empty_ledger() -> None:
    document = exports.export_all([], [], NOW)
    assert document.period == "N/A to N/A"
    assert document.entries == []


def test_full_export_round_trip(filled_store: EntityStore, config, clock) -> None:
    text = json.dumps(exports.export_all(filled_store.entries, filled_store.projects, NOW).to_json_dict())
    bundle = exports.parse_export_document(text)

    fresh = EntityStore(clock=clock, config=config)
    fresh.import_projects(bundle.projects)
    fresh.import_day_entries(bundle.entries)

    today = dt.date(2024, 1, 10)
    before = stats.summarize_range(stats.totals_by_date(filled_store.entries, today))
    after = stats.summarize_range(stats.totals_by_date(fresh.entries, today))
    assert after.work_minutes == before.work_minutes
    assert {project.name for project in fresh.projects} == {project.name for project in filled_store.projects}


def test_legacy_clock_times_only_survive_without_attendance(filled_store: EntityStore) -> None:
    document = exports.export_all(filled_store.entries, filled_store.projects, NOW).to_json_dict()
    bundle = exports.parse_export_document(document)

    by_date = {entry.date: entry for entry in bundle.entries}
    assert by_date["2024-01-08"].clock_in is None
    assert by_date["2024-01-09"].clock_in == "09:00"
    assert by_date["2024-01-09"].clock_out == "12:00"


def test_placeholder_projects_for_unknown_names() -> None:
    document = {
        "exportedAt": "2024-01-10T12:00:00Z",
        "exportType": "day",
        "entries": [
            {
                "date": "2024-01-08",
                "projects": [
                    {"name": "Mystery", "workSessions": [{"start": "09:00", "end": "10:00"}]},
                    {"name": "Known"},
                    {"name": "Unknown Project"},
                ],
            }
        ],
    }

    bundle = exports.parse_export_document(document)
    placeholders = bundle.placeholder_projects({"known"})

    assert [(project.name, project.start_date) for project in placeholders] == [("Mystery", "2024-01-08")]


@pytest.mark.parametrize(
    "source",
    [
        "{not json",
        json.dumps({"entries": []}),
        json.dumps({"exportedAt": "2024-01-10T12:00:00Z"}),
        json.dumps({"exportedAt": "2024-01-10T12:00:00Z", "entries": [{"clockIn": "08:00"}]}),
        json.dumps([1, 2, 3]),
    ],
)
def test_malformed_documents_are_rejected(source: str) -> None:
    with pytest.raises(ImportFormatError):
        exports.parse_export_document(source)


def test_project_summary_uses_unknown_for_missing_projects() -> None:
    entry = DayEntry(
        date="2024-01-08",
        projects=[DayProjectEntry(project_id="gone", work_sessions=[WorkSession(start="09:00", end="09:30")])],
    )
    document = exports.export_day(dt.date(2024, 1, 8), entry, [Project(name="Other")], NOW)

    assert document.entries[0].projects[0].name == "Unknown Project"
    assert document.summary.projects_summary[0].name == "Unknown Project"
