from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from codecoach.config import get_settings
from codecoach.db.session import dispose_engine
from codecoach.telemetry import TelemetryEvent, register_listener


@pytest.fixture
def database(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    db_path = tmp_path / "codecoach.db"
    monkeypatch.setenv("CODECOACH_DATABASE_URL", f"sqlite:///{db_path}")
    get_settings.cache_clear()
    dispose_engine()
    yield db_path
    dispose_engine()
    get_settings.cache_clear()


@pytest.fixture
def telemetry_events() -> Iterator[list[TelemetryEvent]]:
    events: list[TelemetryEvent] = []
    unregister = register_listener(events.append)
    yield events
    unregister()
