from __future__ import annotations

import datetime as dt
import os
from typing import Generator
from zoneinfo import ZoneInfo

os.environ.setdefault("TL_STORAGE", "memory")

import pytest
from fastapi.testclient import TestClient

from timeledger.config import Settings
from timeledger.history import UndoHistory
from timeledger.main import app, get_ledger
from timeledger.persistence import MemoryStore
from timeledger.services import Ledger
from timeledger.store import EntityStore

BERLIN = ZoneInfo("Europe/Berlin")


class FakeClock:
    """Wall clock pinned to a moment that tests move explicitly."""

    def __init__(self, moment: dt.datetime):
        self.moment = moment

    def __call__(self) -> dt.datetime:
        return self.moment

    def set(self, hour: int, minute: int) -> None:
        self.moment = self.moment.replace(hour=hour, minute=minute)


class FakeTimer:
    """Monotonic seconds for the debounce buffer."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def config() -> Settings:
    return Settings(
        storage_backend="memory",
        timezone="Europe/Berlin",
        history_depth=30,
        snapshot_debounce_seconds=1.0,
        round_to_five=False,
        daily_quota_hours=8,
        crm_org_url=None,
        crm_client_id=None,
        crm_tenant_id=None,
    )


@pytest.fixture()
def clock() -> FakeClock:
    # Wednesday
    return FakeClock(dt.datetime(2024, 1, 10, 9, 30, tzinfo=BERLIN))


@pytest.fixture()
def timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture()
def port() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def store(config: Settings, clock: FakeClock) -> EntityStore:
    return EntityStore(clock=clock, config=config)


@pytest.fixture()
def ledger(port: MemoryStore, config: Settings, clock: FakeClock, timer: FakeTimer) -> Ledger:
    history = UndoHistory(max_depth=config.history_depth, debounce_seconds=1.0, clock=timer)
    return Ledger(port, config, clock=clock, history=history)


@pytest.fixture(scope="function")
def client(ledger: Ledger) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_ledger] = lambda: ledger
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def sample_day() -> dt.date:
    return dt.date(2024, 1, 10)
