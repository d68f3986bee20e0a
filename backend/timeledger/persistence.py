"""Load/save of the two ledger collections.

Each collection is one JSON array serialised whole. A backend only has to
read and write opaque text blobs; decoding is shared and never raises on bad
stored data.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, Type, TypeVar

from pydantic import ValidationError
from sqlalchemy.orm import Session

from .config import Settings
from .database import build_engine, build_session_factory, db_session
from .models import AppSetting, LedgerBlob
from .schemas import DayEntry, LedgerModel, Project

logger = logging.getLogger(__name__)

PROJECTS_KEY = "timetrack-projects"
ENTRIES_KEY = "timetrack-entries"
SETTINGS_KEY = "timetrack-settings"

RecordT = TypeVar("RecordT", bound=LedgerModel)


def _decode(raw: Optional[str], model: Type[RecordT], label: str) -> List[RecordT]:
    if not raw:
        return []
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Stored %s are not valid JSON; starting with an empty collection", label)
        return []
    if not isinstance(payload, list):
        logger.warning("Stored %s are not a JSON array; starting with an empty collection", label)
        return []
    records: List[RecordT] = []
    for index, item in enumerate(payload):
        try:
            records.append(model.model_validate(item))
        except ValidationError as exc:
            logger.warning("Skipping stored %s #%d: %s", label, index, exc.errors()[0].get("msg", exc))
    return records


def decode_projects(raw: Optional[str]) -> List[Project]:
    return _decode(raw, Project, "projects")


def decode_entries(raw: Optional[str]) -> List[DayEntry]:
    return _decode(raw, DayEntry, "day entries")


def encode_records(records: List[LedgerModel]) -> str:
    return json.dumps([record.to_json_dict() for record in records], ensure_ascii=False)


class LedgerStore(Protocol):
    def load(self) -> Tuple[List[Project], List[DayEntry]]:
        ...

    def save(self, projects: List[Project], entries: List[DayEntry]) -> None:
        ...

    def load_settings(self) -> Dict[str, Any]:
        ...

    def save_settings(self, values: Dict[str, Any]) -> None:
        ...


class BlobStore:
    """Shared load/save on top of ``_read``/``_write`` of named text blobs."""

    def _read(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def _write(self, key: str, value: str) -> None:
        raise NotImplementedError

    def load(self) -> Tuple[List[Project], List[DayEntry]]:
        return decode_projects(self._read(PROJECTS_KEY)), decode_entries(self._read(ENTRIES_KEY))

    def save(self, projects: List[Project], entries: List[DayEntry]) -> None:
        self._write(PROJECTS_KEY, encode_records(projects))
        self._write(ENTRIES_KEY, encode_records(entries))

    def load_settings(self) -> Dict[str, Any]:
        raw = self._read(SETTINGS_KEY)
        if not raw:
            return {}
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Stored settings are not valid JSON; using defaults")
            return {}
        return decoded if isinstance(decoded, dict) else {}

    def save_settings(self, values: Dict[str, Any]) -> None:
        current = self.load_settings()
        current.update(values)
        self._write(SETTINGS_KEY, json.dumps(current))


class MemoryStore(BlobStore):
    def __init__(self, blobs: Optional[Dict[str, str]] = None) -> None:
        self.blobs: Dict[str, str] = dict(blobs or {})

    def _read(self, key: str) -> Optional[str]:
        return self.blobs.get(key)

    def _write(self, key: str, value: str) -> None:
        self.blobs[key] = value


class JsonFileStore(BlobStore):
    FILENAMES = {
        PROJECTS_KEY: "projects.json",
        ENTRIES_KEY: "entries.json",
        SETTINGS_KEY: "settings.json",
    }

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return self.directory / self.FILENAMES[key]

    def _read(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not read %s: %s", path, exc)
            return None

    def _write(self, key: str, value: str) -> None:
        path = self.path_for(key)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(value, encoding="utf-8")
        os.replace(tmp_path, path)


class SqlBlobStore(BlobStore):
    def __init__(self, factory: Callable[[], Session]) -> None:
        self.factory = factory

    def _read(self, key: str) -> Optional[str]:
        with db_session(self.factory) as session:
            record = session.get(LedgerBlob, key)
            return record.value if record else None

    def _write(self, key: str, value: str) -> None:
        with db_session(self.factory) as session:
            record = session.get(LedgerBlob, key)
            if record:
                record.value = value
            else:
                session.add(LedgerBlob(key=key, value=value))

    def load_settings(self) -> Dict[str, Any]:
        decoded: Dict[str, Any] = {}
        with db_session(self.factory) as session:
            for record in session.query(AppSetting).all():
                try:
                    decoded[record.key] = json.loads(record.value)
                except json.JSONDecodeError:
                    logger.warning("Ignoring malformed setting %s", record.key)
        return decoded

    def save_settings(self, values: Dict[str, Any]) -> None:
        with db_session(self.factory) as session:
            for key, value in values.items():
                encoded = json.dumps(value)
                record = session.query(AppSetting).filter(AppSetting.key == key).one_or_none()
                if record:
                    record.value = encoded
                else:
                    session.add(AppSetting(key=key, value=encoded))


def build_store(config: Settings) -> LedgerStore:
    if config.storage_backend == "sqlite":
        factory = build_session_factory(build_engine(config.sqlite_path))
        return SqlBlobStore(factory)
    if config.storage_backend == "memory":
        return MemoryStore()
    return JsonFileStore(config.json_dir)
