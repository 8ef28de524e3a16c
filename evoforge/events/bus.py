"""Event bus: run lifecycle notifications with wildcard topics.

Run controllers publish here; reporters, dashboards and tests listen.
Patterns match the fnmatch way, so "evolution.run_*" receives
"evolution.run_started" and "evolution.run_failed" but not
"evolution.generation_completed".
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from collections import deque
from datetime import datetime
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field

from evoforge.config import settings
from evoforge.types import new_id

logger = logging.getLogger(__name__)

EventHandler = Callable[["Event"], Awaitable[None]]


class Event(BaseModel):
    """One published notification. ``run_id`` is lifted out of the payload."""

    id: str = Field(default_factory=new_id)
    topic: str
    run_id: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    source: str = ""
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class EventBus:
    """Async fan-out of events to every handler whose pattern matches."""

    def __init__(self, history_limit: int | None = None) -> None:
        self._handlers: list[tuple[str, EventHandler]] = []
        self._history: deque[Event] = deque(maxlen=history_limit or settings.event_history_limit)

    def subscribe(self, pattern: str, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler`` for topics matching ``pattern``.

        Returns a callable that undoes the subscription.
        """
        self._handlers.append((pattern, handler))
        return lambda: self.unsubscribe(pattern, handler)

    def unsubscribe(self, pattern: str, handler: EventHandler) -> None:
        entry = (pattern, handler)
        if entry in self._handlers:
            self._handlers.remove(entry)

    async def emit(self, topic: str, data: dict | None = None, source: str = "") -> Event:
        """Record the event and await every matching handler.

        A handler that raises is logged and skipped; the others still run
        and the emitter never sees the error.
        """
        payload = dict(data or {})
        event = Event(topic=topic, run_id=str(payload.get("run_id", "")), data=payload, source=source)
        self._history.append(event)

        matched = [h for p, h in self._handlers if fnmatch.fnmatch(topic, p)]
        if not matched:
            return event

        results = await asyncio.gather(*(h(event) for h in matched), return_exceptions=True)
        for handler, result in zip(matched, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Event handler %s failed on %s: %s",
                    getattr(handler, "__qualname__", handler), topic, result,
                )
        return event

    def history(
        self, topic_filter: str = "*", run_id: str | None = None, limit: int = 50
    ) -> list[Event]:
        """Recent events, newest first, filtered by topic pattern and run."""
        events = [
            e for e in self._history
            if fnmatch.fnmatch(e.topic, topic_filter) and (run_id is None or e.run_id == run_id)
        ]
        return events[::-1][:limit]

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def topics(self) -> list[str]:
        """Distinct topics seen in the retained history, sorted."""
        return sorted({e.topic for e in self._history})
