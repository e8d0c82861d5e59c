"""Ordered in-memory trace log with consume-on-success flushing."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Sequence, Tuple

from .errors import CoachError
from .models import TraceEvent
from .telemetry import emit_event

logger = logging.getLogger(__name__)

DEFAULT_FLUSH_THRESHOLD = 10

TraceSink = Callable[[Sequence[TraceEvent]], Awaitable[Any]]


class TraceBuffer:
    """Buffers trace events and pushes them to a remote sink in ordered batches.

    ``flush`` sends the whole buffer as one batch and, once the sink accepts
    it, removes exactly that prefix. Events appended while the request is in
    flight stay queued for the next flush. A failed flush leaves the buffer
    untouched; nothing is retried internally.
    """

    def __init__(
        self,
        sink: TraceSink,
        *,
        threshold: int = DEFAULT_FLUSH_THRESHOLD,
        label: str = "",
    ) -> None:
        if threshold < 1:
            raise ValueError("Flush threshold must be at least 1.")
        self._sink = sink
        self._threshold = threshold
        self._label = label
        self._events: List[TraceEvent] = []
        self._flush_lock = asyncio.Lock()
        self._flushed_total = 0

    def __len__(self) -> int:
        return len(self._events)

    @property
    def threshold(self) -> int:
        return self._threshold

    @property
    def flushed_total(self) -> int:
        return self._flushed_total

    def snapshot(self) -> Tuple[TraceEvent, ...]:
        return tuple(self._events)

    def append(self, event: TraceEvent) -> None:
        self._events.append(event)

    def should_flush(self) -> bool:
        return len(self._events) >= self._threshold

    async def flush(self) -> int:
        """Send buffered events; return how many were consumed."""
        async with self._flush_lock:
            if not self._events:
                return 0
            batch = list(self._events)
            await self._sink(batch)
            # Only flush removes events and flushes are serialized, so the
            # sent batch is still the buffer prefix.
            del self._events[: len(batch)]
            self._flushed_total += len(batch)
        logger.debug("Flushed %s trace events (session=%s)", len(batch), self._label or "-")
        emit_event("trace_flushed", session_id=self._label, count=len(batch), remaining=len(self._events))
        return len(batch)

    async def auto_flush(self) -> int:
        """Flush when the threshold is reached; failures are logged and deferred."""
        if not self.should_flush():
            return 0
        try:
            return await self.flush()
        except CoachError as exc:
            logger.warning(
                "Automatic trace flush failed (session=%s, buffered=%s): %s",
                self._label or "-",
                len(self._events),
                exc,
            )
            emit_event("trace_flush_failed", session_id=self._label, buffered=len(self._events), error=str(exc))
            return 0


__all__ = ["DEFAULT_FLUSH_THRESHOLD", "TraceBuffer", "TraceSink"]
