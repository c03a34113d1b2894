"""Lifecycle status events.

Every orchestrator instance owns one ``StatusEventBus``. Observers (a UI
indicator, the CLI logger, tests) subscribe to it and receive ``StatusEvent``
objects in the order the orchestrator observes them.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

log = logging.getLogger("juniper.status")

BUILDING = "building"
SERVER_READY = "server-ready"
READY = "ready"
EXECUTING = "executing"
REQUESTING_KERNEL = "requesting-kernel"
FAILED = "failed"


@dataclass(frozen=True)
class StatusEvent:
    status: str
    data: dict[str, Any] | None = None
    name: str = "juniper"


Listener = Callable[[StatusEvent], Union[None, Awaitable[None]]]


class StatusEventBus:
    """Synchronous, in-order broadcast of status events."""

    def __init__(self, event_name: str = "juniper") -> None:
        self.event_name = event_name
        self._listeners: list[Listener] = []
        self._last_status: str | None = None

    @property
    def last_status(self) -> str | None:
        return self._last_status

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Subscribe to all status events. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, status: str, data: dict[str, Any] | None = None) -> StatusEvent | None:
        # A failure is reported once; the next event must start a new attempt.
        if status == FAILED and self._last_status == FAILED:
            return None
        self._last_status = status

        event = StatusEvent(status=status, data=data, name=self.event_name)
        log.debug(f"{self.event_name}: {status} {data or ''}".rstrip())
        for listener in list(self._listeners):
            try:
                result = listener(event)
            except Exception as e:
                log.warning(f"Status listener error: {type(e).__name__}: {e}")
                continue
            if inspect.isawaitable(result):
                asyncio.ensure_future(_safe_await(result))
        return event


async def _safe_await(result: Awaitable[None]) -> None:
    try:
        await result
    except Exception as e:
        log.warning(f"Status listener error: {type(e).__name__}: {e}")
