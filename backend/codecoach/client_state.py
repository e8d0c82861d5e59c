"""Durable key/value slots for client state that must survive a host restart."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from sqlalchemy import select

from .config import Settings, get_settings
from .db.models import ClientStateModel
from .db.session import session_scope

logger = logging.getLogger(__name__)

PENDING_STARTER_SLOT = "codecoach.pendingStarter.v1"


class StateStore(Protocol):
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    def set(self, key: str, value: Dict[str, Any]) -> None:
        ...

    def delete(self, key: str) -> bool:
        ...


class DatabaseStateStore:
    """Slots stored as JSON documents in the ``client_state`` table."""

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with session_scope(commit=False) as session:
            model = session.get(ClientStateModel, key)
            return dict(model.value) if model is not None else None

    def set(self, key: str, value: Dict[str, Any]) -> None:
        with session_scope() as session:
            model = session.get(ClientStateModel, key)
            if model is None:
                session.add(ClientStateModel(key=key, value=dict(value)))
            else:
                model.value = dict(value)

    def delete(self, key: str) -> bool:
        with session_scope() as session:
            model = session.execute(select(ClientStateModel).where(ClientStateModel.key == key)).scalar_one_or_none()
            if model is None:
                return False
            session.delete(model)
            return True


class FileStateStore:
    """JSON-file slots for hosts that run without a local database."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.RLock()

    def _load_unlocked(self) -> Dict[str, Dict[str, Any]]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except ValueError:
            logger.exception("Client state file %s is corrupt; starting empty", self._path)
            return {}
        return raw if isinstance(raw, dict) else {}

    def _write_unlocked(self, slots: Dict[str, Dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(slots, handle, indent=2)
        tmp_path.replace(self._path)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            value = self._load_unlocked().get(key)
        return dict(value) if isinstance(value, dict) else None

    def set(self, key: str, value: Dict[str, Any]) -> None:
        with self._lock:
            slots = self._load_unlocked()
            slots[key] = dict(value)
            self._write_unlocked(slots)

    def delete(self, key: str) -> bool:
        with self._lock:
            slots = self._load_unlocked()
            if key not in slots:
                return False
            slots.pop(key)
            self._write_unlocked(slots)
            return True


def build_state_store(settings: Settings | None = None) -> StateStore:
    settings = settings or get_settings()
    if settings.state_mode == "file":
        return FileStateStore(settings.state_path)
    return DatabaseStateStore()


__all__ = [
    "DatabaseStateStore",
    "FileStateStore",
    "PENDING_STARTER_SLOT",
    "StateStore",
    "build_state_store",
]
