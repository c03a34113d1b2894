"""Live Jupyter kernel over the server's channels WebSocket.

``JupyterKernel`` owns one ``aiohttp.ClientSession`` and one WebSocket. A
reader task routes every inbound message to the pending request it answers
(matched on ``parent_header.msg_id``).
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import AsyncIterator

import aiohttp

from juniper.errors import (
    JuniperError,
    KernelChannelError,
    KernelServiceHTTPError,
    RestartError,
)
from juniper.kernel.client import KernelServiceClient
from juniper.models import ConnectionSettings

log = logging.getLogger("juniper.kernel")

PROTOCOL_VERSION = "5.3"


def make_message(
    msg_type: str, content: dict, *, session_id: str, channel: str = "shell"
) -> dict:
    msg_id = uuid.uuid4().hex
    return {
        "header": {
            "msg_id": msg_id,
            "msg_type": msg_type,
            "username": "juniper",
            "session": session_id,
            "date": datetime.now(timezone.utc).isoformat(),
            "version": PROTOCOL_VERSION,
        },
        "msg_id": msg_id,
        "msg_type": msg_type,
        "parent_header": {},
        "metadata": {},
        "content": content,
        "buffers": [],
        "channel": channel,
    }


def _msg_type(msg: dict) -> str | None:
    header = msg.get("header")
    if isinstance(header, dict) and isinstance(header.get("msg_type"), str):
        return header["msg_type"]
    value = msg.get("msg_type")
    return value if isinstance(value, str) else None


class JupyterExecutionFuture:
    """Messages produced by one shell request.

    Iterating yields the request's iopub messages and stops at
    ``status: idle``. ``wait_reply`` returns the shell reply content.
    """

    def __init__(self, msg_id: str):
        self.msg_id = msg_id
        self._queue: asyncio.Queue[dict | None] = asyncio.Queue()
        self._reply: asyncio.Future[dict] = asyncio.get_running_loop().create_future()
        self._idle = False
        self._error: JuniperError | None = None

    @property
    def done(self) -> bool:
        return self._error is not None or (self._idle and self._reply.done())

    @property
    def error(self) -> JuniperError | None:
        return self._error

    def feed(self, msg: dict) -> None:
        msg_type = _msg_type(msg) or ""
        channel = msg.get("channel")
        if channel == "shell" or (channel is None and msg_type.endswith("_reply")):
            if not self._reply.done():
                content = msg.get("content")
                self._reply.set_result(content if isinstance(content, dict) else {})
            return
        if channel not in (None, "iopub") or self._idle:
            return
        self._queue.put_nowait(msg)
        content = msg.get("content") or {}
        if msg_type == "status" and content.get("execution_state") == "idle":
            self._idle = True
            self._queue.put_nowait(None)

    def fail(self, error: JuniperError) -> None:
        if self._error is not None or self.done:
            return
        self._error = error
        if not self._reply.done():
            self._reply.set_exception(error)
            # Callers that only iterate never await the reply.
            self._reply.exception()
        self._queue.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[dict]:
        return self._iter()

    async def _iter(self) -> AsyncIterator[dict]:
        while True:
            msg = await self._queue.get()
            if msg is None:
                if self._error is not None and not self._idle:
                    raise self._error
                return
            yield msg

    async def wait_reply(self) -> dict:
        return await self._reply


class JupyterKernel:
    """A kernel started through the Jupyter server REST API."""

    def __init__(
        self,
        client: KernelServiceClient,
        http: aiohttp.ClientSession,
        kernel_id: str,
        *,
        kernel_type: str = "python3",
        ready_timeout_s: float = 30,
    ):
        self._client = client
        self._http = http
        self._kernel_id = kernel_id
        self.kernel_type = kernel_type
        self.ready_timeout_s = ready_timeout_s
        self.session_id = uuid.uuid4().hex
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task | None = None
        self._pending: dict[str, JupyterExecutionFuture] = {}

    @classmethod
    async def start(
        cls,
        settings: ConnectionSettings,
        *,
        kernel_type: str = "python3",
        http_timeout_s: float = 600,
        ready_timeout_s: float = 30,
    ) -> JupyterKernel:
        """Start a kernel, open its channels and wait for kernel_info."""
        http = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=http_timeout_s))
        client = KernelServiceClient(settings)
        kernel: JupyterKernel | None = None
        try:
            kernel_id = await client.start_kernel(http, kernel_type)
            kernel = cls(
                client,
                http,
                kernel_id,
                kernel_type=kernel_type,
                ready_timeout_s=ready_timeout_s,
            )
            await kernel.connect()
            await kernel.wait_ready()
        except BaseException:
            if kernel is not None:
                await kernel.close()
            else:
                await http.close()
            raise
        return kernel

    @property
    def id(self) -> str:
        return self._kernel_id

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> None:
        self._ws = await self._client.connect_channels(
            self._http, self._kernel_id, self.session_id
        )
        self._reader = asyncio.create_task(self._read_loop())

    async def wait_ready(self) -> dict:
        future = await self._send("kernel_info_request", {})
        return await asyncio.wait_for(future.wait_reply(), timeout=self.ready_timeout_s)

    async def restart(self) -> None:
        if self._http.closed:
            raise RestartError(f"Kernel {self._kernel_id} is closed")
        log.info(f"Restarting kernel {self._kernel_id}")
        try:
            await self._client.restart_kernel(self._http, self._kernel_id)
            await self.wait_ready()
        except (
            aiohttp.ClientError,
            asyncio.TimeoutError,
            KernelServiceHTTPError,
            KernelChannelError,
        ) as e:
            raise RestartError(
                f"Restarting kernel {self._kernel_id} failed: {type(e).__name__}: {e}"
            ) from e

    async def request_execute(self, code: str) -> JupyterExecutionFuture:
        return await self._send(
            "execute_request",
            {
                "code": code,
                "silent": False,
                "store_history": True,
                "user_expressions": {},
                "allow_stdin": False,
                "stop_on_error": True,
            },
        )

    async def shutdown(self) -> None:
        try:
            await self._client.shutdown_kernel(self._http, self._kernel_id)
        except (aiohttp.ClientError, KernelServiceHTTPError) as e:
            log.warning(f"Kernel {self._kernel_id} shutdown failed: {e}")
        finally:
            await self.close()

    async def close(self) -> None:
        if self._reader:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._fail_pending(KernelChannelError(f"Kernel {self._kernel_id} closed"))
        if not self._http.closed:
            await self._http.close()

    async def _send(self, msg_type: str, content: dict) -> JupyterExecutionFuture:
        msg = make_message(msg_type, content, session_id=self.session_id)
        future = JupyterExecutionFuture(msg["header"]["msg_id"])
        if not self.connected:
            future.fail(KernelChannelError(f"Kernel {self._kernel_id} channel is closed"))
            return future

        self._pending[future.msg_id] = future
        try:
            await self._ws.send_str(json.dumps(msg))
        except (aiohttp.ClientError, ConnectionError) as e:
            self._pending.pop(future.msg_id, None)
            future.fail(KernelChannelError(f"Sending {msg_type} failed: {e}"))
        return future

    async def _read_loop(self) -> None:
        try:
            async for frame in self._ws:
                if frame.type == aiohttp.WSMsgType.TEXT:
                    try:
                        msg = json.loads(frame.data)
                    except json.JSONDecodeError:
                        log.debug("Ignoring non-JSON kernel frame")
                        continue
                    if isinstance(msg, dict):
                        self._dispatch(msg)
                elif frame.type == aiohttp.WSMsgType.ERROR:
                    log.warning(f"Kernel channel error: {self._ws.exception()}")
                    break
        finally:
            self._fail_pending(
                KernelChannelError(f"Kernel {self._kernel_id} channel closed")
            )

    def _dispatch(self, msg: dict) -> None:
        parent = msg.get("parent_header")
        if not isinstance(parent, dict):
            return
        future = self._pending.get(parent.get("msg_id"))
        if future is None:
            return
        future.feed(msg)
        if future.done:
            self._pending.pop(future.msg_id, None)

    def _fail_pending(self, error: JuniperError) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            future.fail(error)
