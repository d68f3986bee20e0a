"""Identity matching and field merge for imported records.

Both project and day-entry imports go through :func:`reconcile` with an
ordered rule table. The first rule whose key matches an already known record
decides how the incoming record is merged; records no rule matches are
created.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .schemas import DAY_ENTRY_FIELDS, DayEntry, ImportResult, Project
from .utils import normalize_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationRule:
    """``matcher`` returns the identity key of a record, or None when it has none."""

    name: str
    matcher: Callable[[Any], Optional[str]]
    strategy: Callable[[Any, Any], Any]


@dataclass
class ReconciliationPlan:
    creates: List[Any] = field(default_factory=list)
    updates: List[Tuple[Any, Any, str]] = field(default_factory=list)
    created: int = 0
    updated: int = 0

    def result(self, skipped: int = 0) -> ImportResult:
        return ImportResult(created=self.created, updated=self.updated, skipped=skipped)


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) > 0
    return True


def prefer_incoming(existing: Any, incoming: Any, fields: Sequence[str]) -> Any:
    """Take each field from ``incoming`` unless it is empty there."""
    updates = {}
    for name in fields:
        value = getattr(incoming, name)
        if _present(value):
            updates[name] = value
    return existing.model_copy(update=updates, deep=True)


def fill_missing(existing: Any, incoming: Any, fields: Sequence[str]) -> Any:
    """Take each field from ``incoming`` only where ``existing`` is empty."""
    updates = {}
    for name in fields:
        if not _present(getattr(existing, name)) and _present(getattr(incoming, name)):
            updates[name] = getattr(incoming, name)
    return existing.model_copy(update=updates, deep=True)


SYNCED_PROJECT_FIELDS = ("name", "description", "start_date", "end_date", "tasks", "external_ref")


def overwrite_synced_fields(existing: Project, incoming: Project) -> Project:
    updates: Dict[str, Any] = {
        "name": incoming.name or existing.name,
        "description": incoming.description,
        "start_date": incoming.start_date or existing.start_date,
        "end_date": incoming.end_date,
        "external_ref": incoming.external_ref,
    }
    if incoming.tasks:
        updates["tasks"] = incoming.tasks
    return existing.model_copy(update=updates, deep=True)


def fill_empty_project_fields(existing: Project, incoming: Project) -> Project:
    return fill_missing(existing, incoming, SYNCED_PROJECT_FIELDS[1:])


def prefer_non_empty_entry(existing: DayEntry, incoming: DayEntry) -> DayEntry:
    return prefer_incoming(existing, incoming, DAY_ENTRY_FIELDS)


PROJECT_RULES: Tuple[ReconciliationRule, ...] = (
    ReconciliationRule("external-id", lambda project: project.external_id or None, overwrite_synced_fields),
    ReconciliationRule("name", lambda project: normalize_name(project.name), fill_empty_project_fields),
)

DAY_ENTRY_RULES: Tuple[ReconciliationRule, ...] = (
    ReconciliationRule("date", lambda entry: entry.date or None, prefer_non_empty_entry),
)


def reconcile(
    incoming: Iterable[Any],
    existing: Iterable[Any],
    rules: Sequence[ReconciliationRule],
    create: Optional[Callable[[Any, Set[str]], Any]] = None,
) -> ReconciliationPlan:
    """Plan how ``incoming`` records merge into ``existing`` ones.

    Records are addressed by their ``id``. A record planned for creation is
    indexed straight away, so a later duplicate in the same batch merges into
    it rather than creating a second record. Every incoming record counts once,
    as either created or updated.

    ``create`` receives the unmatched record and the ids already in use,
    including those created earlier in the batch, and must return a record
    whose id is not among them.
    """
    current: Dict[str, Any] = {}
    originals: Dict[str, Any] = {}
    indexes: List[Dict[str, str]] = [{} for _ in rules]

    def index(record: Any) -> None:
        for rule, lookup in zip(rules, indexes):
            key = rule.matcher(record)
            if key is not None:
                lookup.setdefault(key, record.id)

    for record in existing:
        current[record.id] = record
        originals[record.id] = record
        index(record)

    plan = ReconciliationPlan()
    created_ids: List[str] = []
    updated: Dict[str, str] = {}

    for record in incoming:
        match_id: Optional[str] = None
        matched_rule: Optional[ReconciliationRule] = None
        for rule, lookup in zip(rules, indexes):
            key = rule.matcher(record)
            if key is not None and key in lookup:
                match_id, matched_rule = lookup[key], rule
                break
        if match_id is None or matched_rule is None:
            new_record = create(record, set(current)) if create else record
            current[new_record.id] = new_record
            created_ids.append(new_record.id)
            index(new_record)
            plan.created += 1
            continue
        merged = matched_rule.strategy(current[match_id], record)
        current[match_id] = merged
        index(merged)
        if match_id in originals:
            updated.setdefault(match_id, matched_rule.name)
        plan.updated += 1
        logger.debug("Matched incoming record on %s -> %s", matched_rule.name, match_id)

    plan.creates = [current[record_id] for record_id in created_ids]
    plan.updates = [(originals[record_id], current[record_id], rule_name) for record_id, rule_name in updated.items()]
    return plan
