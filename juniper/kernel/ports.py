"""Ports (interfaces) for kernel sessions.

The controller and acquisition policy depend on these contracts rather than
on the concrete Jupyter WebSocket implementation.
"""

from __future__ import annotations

from typing import AsyncIterator, Awaitable, Callable, Protocol

from juniper.models import ConnectionSettings


class ExecutionFuture(Protocol):
    """Output of one execute request."""

    msg_id: str

    def __aiter__(self) -> AsyncIterator[dict]: ...

    async def wait_reply(self) -> dict: ...


class SessionHandle(Protocol):
    """A live kernel that can run code and be reset."""

    @property
    def id(self) -> str: ...

    async def restart(self) -> None: ...

    async def request_execute(self, code: str) -> ExecutionFuture: ...

    async def shutdown(self) -> None: ...

    async def close(self) -> None: ...


KernelLauncher = Callable[[ConnectionSettings], Awaitable[SessionHandle]]
