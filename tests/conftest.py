"""Shared test fixtures for Juniper."""

from __future__ import annotations

import asyncio
import contextlib
import io
import json
import uuid
from typing import Any

import pytest
from aiohttp import WSMsgType, web

from juniper.config import JuniperConfig
from juniper.models import ConnectionSettings
from juniper.status import StatusEvent, StatusEventBus
from juniper.storage import MemoryStore

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures; importable by test files)
# ---------------------------------------------------------------------------

CACHED_SETTINGS = ConnectionSettings(
    base_url="http://cached.example:8888",
    ws_url="ws://cached.example:8888",
    token="cached-token",
)
BINDER_SETTINGS = ConnectionSettings(
    base_url="http://1.2.3.4:8888",
    ws_url="ws://1.2.3.4:8888",
    token="abc",
)


def make_config(**overrides) -> JuniperConfig:
    """Create a JuniperConfig with test defaults (Binder on, cache on)."""
    defaults: dict[str, Any] = {"repository": "user/repo"}
    defaults.update(overrides)
    return JuniperConfig(**defaults)


def cache_record(settings: ConnectionSettings, expires_at_ms: int) -> str:
    return json.dumps({"settings": settings.to_dict(), "timestamp": expires_at_ms})


def iopub(msg_type: str, content: dict, parent_id: str) -> dict:
    return {
        "header": {"msg_id": uuid.uuid4().hex, "msg_type": msg_type},
        "parent_header": {"msg_id": parent_id},
        "channel": "iopub",
        "content": content,
    }


def sse_body(payloads: list[dict]) -> bytes:
    return b"".join(f"data: {json.dumps(p)}\n\n".encode() for p in payloads)


# ---------------------------------------------------------------------------
# Fake kernel (an in-process stand-in for a SessionHandle)
# ---------------------------------------------------------------------------


class FakeFuture:
    def __init__(self, messages: list[dict]):
        self.msg_id = uuid.uuid4().hex
        self._messages = messages

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for msg in self._messages:
            await asyncio.sleep(0)
            yield msg

    async def wait_reply(self) -> dict:
        return {"status": "ok"}


class FakeKernel:
    """Runs code with exec() in a namespace that a restart wipes."""

    def __init__(self, *, restart_error: Exception | None = None, kernel_id: str = "k1"):
        self._id = kernel_id
        self.restart_error = restart_error
        self.namespace: dict[str, Any] = {}
        self.restarts = 0
        self.executed: list[str] = []
        self.closed = False
        self.shut_down = False

    @property
    def id(self) -> str:
        return self._id

    async def restart(self) -> None:
        if self.closed:
            raise RuntimeError("Session is closed")
        if self.restart_error is not None:
            raise self.restart_error
        self.restarts += 1
        self.namespace = {}

    async def request_execute(self, code: str) -> FakeFuture:
        self.executed.append(code)
        msg_id = uuid.uuid4().hex
        buf = io.StringIO()
        messages: list[dict] = []
        try:
            with contextlib.redirect_stdout(buf):
                exec(code, self.namespace)
        except Exception as e:
            if buf.getvalue():
                messages.append(iopub("stream", {"name": "stdout", "text": buf.getvalue()}, msg_id))
            messages.append(
                iopub("error", {"ename": type(e).__name__, "evalue": str(e), "traceback": []}, msg_id)
            )
        else:
            if buf.getvalue():
                messages.append(iopub("stream", {"name": "stdout", "text": buf.getvalue()}, msg_id))
        messages.append(iopub("status", {"execution_state": "idle"}, msg_id))
        return FakeFuture(messages)

    async def shutdown(self) -> None:
        self.shut_down = True
        await self.close()

    async def close(self) -> None:
        self.closed = True


class FakeLauncher:
    """KernelLauncher that hands out FakeKernels (or raises)."""

    def __init__(self, *, error: Exception | None = None, **kernel_kwargs):
        self.error = error
        self.kernel_kwargs = kernel_kwargs
        self.calls: list[ConnectionSettings] = []
        self.kernels: list[FakeKernel] = []
        self.gate: asyncio.Event | None = None

    async def __call__(self, settings: ConnectionSettings) -> FakeKernel:
        self.calls.append(settings)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        kernel = FakeKernel(kernel_id=f"k{len(self.calls)}", **self.kernel_kwargs)
        self.kernels.append(kernel)
        return kernel


class FakeProvisioner:
    def __init__(self, *, settings: ConnectionSettings = BINDER_SETTINGS, error: Exception | None = None):
        self.settings = settings
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def request(self, repository: str, branch: str) -> ConnectionSettings:
        self.calls.append((repository, branch))
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.settings


# ---------------------------------------------------------------------------
# Fake servers (served with aiohttp.test_utils.TestServer)
# ---------------------------------------------------------------------------

BINDER_REQUESTS = web.AppKey("binder_requests", list[str])
JUPYTER_STATE = web.AppKey("jupyter_state", dict[str, Any])


def binder_app(
    payloads: list[dict], *, status: int = 200, error_body: bytes = b"binder unavailable"
) -> web.Application:
    """A Binder build endpoint streaming ``payloads`` as SSE then hanging up."""
    requests: list[str] = []

    async def build(request: web.Request) -> web.StreamResponse:
        requests.append(request.path)
        if status >= 400:
            return web.Response(
                status=status, body=error_body, content_type="text/plain", charset="utf-8"
            )
        resp = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
        await resp.prepare(request)
        await resp.write(b": keepalive\n\n")
        for payload in payloads:
            await resp.write(sse_body([payload]))
        return resp

    app = web.Application()
    app.router.add_get("/build/gh/{owner}/{repo}/{branch}", build)
    app[BINDER_REQUESTS] = requests
    return app


def jupyter_app(
    *,
    token: str = "secret",
    fail_start: bool = False,
    fail_restart: bool = False,
    start_error_body: bytes = b"no kernels for you",
) -> web.Application:
    """A tiny Jupyter server: kernels REST API plus the channels WebSocket."""
    state: dict[str, Any] = {"kernels": {}, "restarts": 0, "deleted": [], "executed": []}

    def _authorized(request: web.Request) -> bool:
        header = request.headers.get("Authorization", "")
        return header == f"token {token}" or request.query.get("token") == token

    async def create(request: web.Request) -> web.Response:
        if not _authorized(request):
            return web.Response(status=403, text="Forbidden")
        if fail_start:
            return web.Response(
                status=500, body=start_error_body, content_type="text/plain", charset="utf-8"
            )
        body = await request.json()
        kernel_id = f"kernel-{len(state['kernels']) + 1}"
        state["kernels"][kernel_id] = body["name"]
        return web.json_response({"id": kernel_id, "name": body["name"]}, status=201)

    async def restart(request: web.Request) -> web.Response:
        if fail_restart:
            return web.Response(status=500, text="restart failed")
        state["restarts"] += 1
        return web.json_response({"id": request.match_info["kid"]})

    async def delete(request: web.Request) -> web.Response:
        state["deleted"].append(request.match_info["kid"])
        return web.Response(status=204)

    async def channels(request: web.Request) -> web.WebSocketResponse:
        if not _authorized(request):
            return web.Response(status=403, text="Forbidden")
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        async def send(channel: str, msg_type: str, content: dict, parent: dict) -> None:
            await ws.send_json(
                {
                    "header": {"msg_id": uuid.uuid4().hex, "msg_type": msg_type},
                    "parent_header": parent,
                    "channel": channel,
                    "content": content,
                    "metadata": {},
                }
            )

        async for frame in ws:
            if frame.type != WSMsgType.TEXT:
                continue
            req = json.loads(frame.data)
            parent = req["header"]
            msg_type = parent["msg_type"]
            await send("iopub", "status", {"execution_state": "busy"}, parent)
            if msg_type == "kernel_info_request":
                await send("shell", "kernel_info_reply", {"status": "ok"}, parent)
            elif msg_type == "execute_request":
                code = req["content"]["code"]
                state["executed"].append(code)
                await send("iopub", "stream", {"name": "stdout", "text": f"ran: {code}\n"}, parent)
                await send("shell", "execute_reply", {"status": "ok", "execution_count": 1}, parent)
            await send("iopub", "status", {"execution_state": "idle"}, parent)
        return ws

    app = web.Application()
    app.router.add_post("/api/kernels", create)
    app.router.add_post("/api/kernels/{kid}/restart", restart)
    app.router.add_delete("/api/kernels/{kid}", delete)
    app.router.add_get("/api/kernels/{kid}/channels", channels)
    app[JUPYTER_STATE] = state
    return app


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def bus() -> StatusEventBus:
    return StatusEventBus()


@pytest.fixture
def statuses(bus: StatusEventBus) -> list[StatusEvent]:
    """Every status event emitted on ``bus``, in order."""
    received: list[StatusEvent] = []
    bus.subscribe(received.append)
    return received
