from __future__ import annotations

import sqlite3
from contextlib import closing
from pathlib import Path

import pytest
from fakes import FakeGateway, RecordingSink

from sqlgate.bridge import AgentSQLBridge
from sqlgate.config.settings import Settings
from sqlgate.events import EventBus
from sqlgate.models.connection import ConnectionSnapshot


@pytest.fixture
def sqlite_db(tmp_path: Path) -> Path:
    db_path = tmp_path / "app.db"
    with closing(sqlite3.connect(db_path)) as conn:
        conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, x INTEGER, name TEXT)")
        conn.executemany(
            "INSERT INTO t (id, x, name) VALUES (?, ?, ?)",
            [(1, 0, "alpha"), (2, 0, "beta")],
        )
        conn.commit()
    return db_path


@pytest.fixture
def sqlite_connection(sqlite_db: Path) -> ConnectionSnapshot:
    return ConnectionSnapshot(kind="sqlite", file_path=str(sqlite_db))


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    settings = Settings()
    settings.agent.work_dir = tmp_path / "work"
    return settings


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def recorded_events() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def bridge(
    settings: Settings, fake_gateway: FakeGateway, recorded_events: RecordingSink
) -> AgentSQLBridge:
    events = EventBus()
    events.add_listener(recorded_events.emit)
    return AgentSQLBridge(settings=settings, gateway=fake_gateway, events=events)
