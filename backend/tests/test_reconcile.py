from __future__ import annotations

from timeledger.reconcile import (
    DAY_ENTRY_RULES,
    PROJECT_RULES,
    ReconciliationRule,
    fill_missing,
    reconcile,
)
from timeledger.schemas import Break, DayEntry, ExternalRef, Project, Task


def test_external_id_rule_overwrites_synced_fields() -> None:
    existing = Project(
        id="p1",
        name="Old name",
        description="Old",
        start_date="2024-01-01",
        tasks=[Task(name="Keep")],
        external_ref=ExternalRef(external_id="X1"),
    )
    incoming = Project(name="New name", description="", external_ref=ExternalRef(external_id="X1", progress=50))

    plan = reconcile([incoming], [existing], PROJECT_RULES)

    assert (plan.created, plan.updated) == (0, 1)
    original, merged, rule = plan.updates[0]
    assert original is existing
    assert rule == "external-id"
    assert merged.id == "p1"
    assert merged.name == "New name"
    assert merged.description == ""
    assert merged.start_date == "2024-01-01"
    assert [task.name for task in merged.tasks] == ["Keep"]
    assert merged.external_ref.progress == 50


def test_name_rule_only_fills_empty_fields() -> None:
    existing = Project(id="p1", name="Alpha", description="Mine", start_date="2024-01-01")
    incoming = Project(name="ALPHA", description="Theirs", end_date="2024-12-31")

    plan = reconcile([incoming], [existing], PROJECT_RULES)

    _, merged, rule = plan.updates[0]
    assert rule == "name"
    assert merged.name == "Alpha"
    assert merged.description == "Mine"
    assert merged.end_date == "2024-12-31"


def test_unmatched_records_are_created_through_factory() -> None:
    plan = reconcile(
        [Project(id="dup", name="New")],
        [Project(id="dup", name="Existing")],
        PROJECT_RULES,
        create=lambda record, taken: record.model_copy(update={"id": "fresh"}),
    )

    assert (plan.created, plan.updated) == (1, 0)
    assert [project.id for project in plan.creates] == ["fresh"]


def test_day_entries_merge_by_date_preferring_non_empty_values() -> None:
    existing = DayEntry(date="2024-01-10", clock_in="08:00", breaks=[Break(start="10:00", end="10:15")])
    incoming = DayEntry(date="2024-01-10", clock_out="17:00")

    plan = reconcile([incoming], [existing], DAY_ENTRY_RULES)

    _, merged, _ = plan.updates[0]
    assert merged.id == existing.id
    assert (merged.clock_in, merged.clock_out) == ("08:00", "17:00")
    assert len(merged.breaks) == 1


def test_custom_rule_table() -> None:
    rules = (
        ReconciliationRule(
            "description",
            lambda project: project.description or None,
            lambda existing, incoming: fill_missing(existing, incoming, ("end_date",)),
        ),
    )
    existing = Project(id="p1", name="A", description="shared")

    plan = reconcile([Project(name="B", description="shared", end_date="2024-02-01")], [existing], rules)

    assert plan.updates[0][1].end_date == "2024-02-01"
