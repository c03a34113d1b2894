"""Execution controller: the per-cell entry point.

Owns the single live kernel handle and the "from cache" flag. ``execute``
always ends in either delivered output or a failure message written to the
sink; orchestrator errors never escape it.

State flow per request::

    no-session -> acquiring -> session-ready -> (isolating) -> executing
        -> delivered | failed
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from juniper.acquisition import AcquisitionOrigin, AcquisitionPlan, SessionAcquisitionPolicy
from juniper.cache import SessionCache
from juniper.errors import JuniperError, RestartError
from juniper.kernel.ports import ExecutionFuture, SessionHandle
from juniper.models import Err, Ok, Result
from juniper.output import OutputSink, stream_output
from juniper.status import EXECUTING, FAILED, REQUESTING_KERNEL, StatusEventBus

log = logging.getLogger("juniper.controller")


class ExecutionState(str, Enum):
    NO_SESSION = "no-session"
    ACQUIRING = "acquiring"
    SESSION_READY = "session-ready"
    ISOLATING = "isolating"
    EXECUTING = "executing"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass(frozen=True)
class ExecutionOutcome:
    state: ExecutionState
    error: JuniperError | None = None
    future: ExecutionFuture | None = None
    sink: OutputSink | None = None

    @property
    def ok(self) -> bool:
        return self.state is ExecutionState.DELIVERED


def _host_of(url: str) -> str:
    return url.split("//", 1)[-1].rstrip("/")


class ExecutionController:
    def __init__(
        self,
        policy: SessionAcquisitionPolicy,
        cache: SessionCache,
        bus: StatusEventBus,
        *,
        isolate: bool = True,
        loading_message: str = "Loading...",
        error_message: str = "Connecting failed. Please reload and try again.",
        service_url: str = "https://mybinder.org",
    ):
        self._policy = policy
        self._cache = cache
        self._bus = bus
        self.isolate = isolate
        self.loading_message = loading_message
        self.error_message = error_message
        self.service_url = service_url

        self._session: SessionHandle | None = None
        self._from_cache = False
        self._acquiring: asyncio.Task | None = None
        self._placeholder = ""
        self._run_lock = asyncio.Lock()
        self.state = ExecutionState.NO_SESSION

    @property
    def session(self) -> SessionHandle | None:
        return self._session

    @property
    def from_cache(self) -> bool:
        return self._from_cache

    @property
    def acquiring(self) -> bool:
        return self._acquiring is not None

    async def execute(self, code: str, sink: OutputSink) -> ExecutionOutcome:
        self._bus.emit(EXECUTING)

        acquired = await self._ensure_session(sink)
        if isinstance(acquired, Err):
            return self._fail(sink, acquired.error)
        handle = acquired.value

        if not self.isolate:
            future = await self._deliver(handle, code, sink)
            return ExecutionOutcome(ExecutionState.DELIVERED, future=future, sink=sink)

        # Restart and submit as one step so a concurrent run's restart
        # cannot wipe this run's interpreter mid-submission.
        async with self._run_lock:
            if self._session is not handle:
                # Dropped by a run that held the lock before us.
                acquired = await self._ensure_session(sink)
                if isinstance(acquired, Err):
                    return self._fail(sink, acquired.error)
                handle = acquired.value
            self.state = ExecutionState.ISOLATING
            restarted = await self._restart(handle)
            if isinstance(restarted, Err):
                self._bus.emit(FAILED)
                await self._drop(handle)
                return self._fail(sink, restarted.error)
            future = await self._deliver(handle, code, sink)
        return ExecutionOutcome(ExecutionState.DELIVERED, future=future, sink=sink)

    async def close(self) -> None:
        """Wait for any in-flight acquisition, then shut the kernel down."""
        if self._acquiring is not None:
            await asyncio.shield(self._acquiring)
        handle, self._session = self._session, None
        if handle is not None:
            await handle.shutdown()
        self.state = ExecutionState.NO_SESSION

    async def _ensure_session(self, sink: OutputSink) -> Result[SessionHandle]:
        if self._session is not None:
            return Ok(self._session)

        if self._acquiring is None:
            self._bus.emit(REQUESTING_KERNEL)
            plan = self._policy.plan()
            self._from_cache = plan.from_cache
            self._placeholder = self._placeholder_for(plan)
            self.state = ExecutionState.ACQUIRING
            self._acquiring = asyncio.create_task(self._acquire(plan))
        else:
            log.debug("Kernel acquisition already in flight, waiting for it")

        sink.clear()
        sink.add(stream_output("stdout", self._placeholder))
        return await asyncio.shield(self._acquiring)

    async def _acquire(self, plan: AcquisitionPlan) -> Result[SessionHandle]:
        try:
            result = await self._policy.acquire(plan)
            if isinstance(result, Ok):
                self._session = result.value
                self.state = ExecutionState.SESSION_READY
                return result

            self._bus.emit(FAILED)
            self._session = None
            if self._from_cache:
                # Stale settings; the next attempt must not loop on them.
                self._cache.clear()
                self._from_cache = False
            return result
        finally:
            self._acquiring = None

    async def _restart(self, handle: SessionHandle) -> Result[SessionHandle]:
        try:
            await handle.restart()
        except RestartError as e:
            log.warning(f"Isolation restart failed, dropping session: {e}")
            return Err(e)
        return Ok(handle)

    async def _deliver(
        self, handle: SessionHandle, code: str, sink: OutputSink
    ) -> ExecutionFuture:
        self.state = ExecutionState.EXECUTING
        sink.clear()
        sink.add(stream_output("loading", self.loading_message))
        sink.clear(wait=True)
        future = await handle.request_execute(code)
        sink.attach(future)
        self.state = ExecutionState.DELIVERED
        return future

    async def _drop(self, handle: SessionHandle) -> None:
        if self._session is handle:
            self._session = None
        try:
            await handle.close()
        except Exception as e:
            log.debug(f"Closing dropped kernel failed: {e}")

    def _fail(self, sink: OutputSink, error: JuniperError) -> ExecutionOutcome:
        self.state = ExecutionState.FAILED
        sink.clear()
        sink.add(stream_output("failure", self.error_message))
        return ExecutionOutcome(ExecutionState.FAILED, error=error, sink=sink)

    def _placeholder_for(self, plan: AcquisitionPlan) -> str:
        action = "Reconnecting to" if plan.from_cache else "Launching"
        if plan.origin is AcquisitionOrigin.STATIC and plan.settings is not None:
            host = _host_of(plan.settings.base_url)
        else:
            host = _host_of(self.service_url)
        return f"{action} Docker container on {host}..."
