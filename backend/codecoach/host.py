"""Outbound host-shell events and the workspace operations the engine relies on."""

from __future__ import annotations

import itertools
import logging
from collections import deque
from pathlib import Path
from threading import RLock
from typing import Callable, Deque, List, Literal, Optional, Protocol, Sequence

from pydantic import BaseModel

logger = logging.getLogger(__name__)

HostEventKind = Literal["status", "message", "busy", "open_file", "open_folder"]
MAX_RETAINED_EVENTS = 500


class HostEvent(BaseModel):
    seq: int
    kind: HostEventKind
    text: Optional[str] = None
    role: Optional[Literal["user", "assistant"]] = None
    busy: Optional[bool] = None
    path: Optional[str] = None


HostListener = Callable[[HostEvent], None]


class HostBridge:
    """Fan-out of display events to subscribers, with a bounded replay log for polling hosts."""

    def __init__(self, *, retain: int = MAX_RETAINED_EVENTS) -> None:
        self._listeners: List[HostListener] = []
        self._log: Deque[HostEvent] = deque(maxlen=retain)
        self._seq = itertools.count(1)
        self._lock = RLock()

    def subscribe(self, listener: HostListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def events_after(self, seq: int = 0) -> List[HostEvent]:
        with self._lock:
            return [event for event in self._log if event.seq > seq]

    def _publish(self, kind: HostEventKind, **fields: object) -> HostEvent:
        with self._lock:
            event = HostEvent(seq=next(self._seq), kind=kind, **fields)
            self._log.append(event)
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.exception("Host listener failed for %s event", kind)
        return event

    def status(self, text: str) -> HostEvent:
        return self._publish("status", text=text)

    def message(self, role: Literal["user", "assistant"], text: str) -> HostEvent:
        return self._publish("message", role=role, text=text)

    def busy(self, busy: bool) -> HostEvent:
        return self._publish("busy", busy=busy)

    def open_file(self, path: Path) -> HostEvent:
        return self._publish("open_file", path=str(path))

    def open_folder(self, path: Path) -> HostEvent:
        return self._publish("open_folder", path=str(path))


class Workspace(Protocol):
    """Workspace operations provided by the host editor."""

    def folders(self) -> Sequence[Path]:
        ...

    async def choose_folder(self) -> Optional[Path]:
        ...

    async def open_folder(self, path: Path) -> None:
        ...

    async def open_file(self, path: Path) -> None:
        ...


class BridgeWorkspace:
    """Workspace whose editor actions are forwarded to the host as bridge events.

    ``choose_folder`` falls back to ``default_folder`` because a headless host
    has no picker; without one, installation cannot pick a destination.
    """

    def __init__(
        self,
        bridge: HostBridge,
        *,
        folders: Sequence[Path] = (),
        default_folder: Optional[Path] = None,
    ) -> None:
        self._bridge = bridge
        self._folders: List[Path] = [Path(folder) for folder in folders]
        self._default_folder = default_folder

    def folders(self) -> Sequence[Path]:
        return list(self._folders)

    async def choose_folder(self) -> Optional[Path]:
        if self._default_folder is None:
            return None
        self._default_folder.mkdir(parents=True, exist_ok=True)
        return self._default_folder

    async def open_folder(self, path: Path) -> None:
        # The host reloads into this folder; it is a workspace folder from then on.
        if path not in self._folders:
            self._folders.insert(0, path)
        self._bridge.open_folder(path)

    async def open_file(self, path: Path) -> None:
        if not path.is_file():
            raise FileNotFoundError(path)
        self._bridge.open_file(path)


__all__ = [
    "BridgeWorkspace",
    "HostBridge",
    "HostEvent",
    "HostEventKind",
    "HostListener",
    "Workspace",
]
