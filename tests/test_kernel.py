"""Tests for the Jupyter kernel client, handle and connection manager."""

from __future__ import annotations

import asyncio
import json

import pytest
from aiohttp.test_utils import TestServer

from juniper.cache import SessionCache
from juniper.errors import (
    KernelChannelError,
    KernelServiceHTTPError,
    KernelStartError,
    RestartError,
)
from juniper.kernel import KernelConnectionManager
from juniper.kernel.client import KernelServiceClient
from juniper.kernel.handle import JupyterExecutionFuture, JupyterKernel, make_message
from juniper.models import ConnectionSettings

from conftest import JUPYTER_STATE, FakeLauncher, jupyter_app


def settings_for(server: TestServer, token: str = "secret") -> ConnectionSettings:
    return ConnectionSettings.from_http_url(str(server.make_url("/")).rstrip("/"), token)


async def collect(future) -> list[dict]:
    return [msg async for msg in future]


class TestKernelServiceClient:
    def test_channels_url_carries_token(self):
        client = KernelServiceClient(
            ConnectionSettings("https://hub/user/x/", "wss://hub/user/x/", "t0k")
        )

        assert client.headers == {"Authorization": "token t0k"}
        assert (
            client.channels_url("k1", "s1")
            == "wss://hub/user/x/api/kernels/k1/channels?session_id=s1&token=t0k"
        )

    def test_no_token_no_auth(self):
        client = KernelServiceClient(ConnectionSettings.from_http_url("http://h:8888"))

        assert client.headers == {}
        assert "token" not in client.channels_url("k1", "s1")


class TestJupyterExecutionFuture:
    @pytest.mark.asyncio
    async def test_routes_reply_and_stops_at_idle(self):
        future = JupyterExecutionFuture("m1")
        future.feed({"channel": "iopub", "header": {"msg_type": "status"}, "content": {"execution_state": "busy"}})
        future.feed({"channel": "iopub", "header": {"msg_type": "stream"}, "content": {"name": "stdout", "text": "hi"}})
        future.feed({"channel": "shell", "header": {"msg_type": "execute_reply"}, "content": {"status": "ok"}})
        future.feed({"channel": "iopub", "header": {"msg_type": "status"}, "content": {"execution_state": "idle"}})
        future.feed({"channel": "iopub", "header": {"msg_type": "stream"}, "content": {"text": "late"}})

        messages = await collect(future)

        assert [m["header"]["msg_type"] for m in messages] == ["status", "stream", "status"]
        assert await future.wait_reply() == {"status": "ok"}
        assert future.done

    @pytest.mark.asyncio
    async def test_failure_surfaces_to_iterator_and_reply(self):
        future = JupyterExecutionFuture("m1")
        future.feed({"channel": "iopub", "header": {"msg_type": "stream"}, "content": {"text": "partial"}})
        future.fail(KernelChannelError("channel closed"))

        with pytest.raises(KernelChannelError):
            await collect(future)
        with pytest.raises(KernelChannelError):
            await future.wait_reply()
        assert isinstance(future.error, KernelChannelError)

    def test_make_message_shape(self):
        msg = make_message("execute_request", {"code": "1"}, session_id="s")

        assert msg["header"]["msg_type"] == "execute_request"
        assert msg["header"]["session"] == "s"
        assert msg["header"]["msg_id"] == msg["msg_id"]
        assert msg["channel"] == "shell"
        json.dumps(msg)


class TestJupyterKernel:
    @pytest.mark.asyncio
    async def test_start_execute_restart_shutdown(self):
        app = jupyter_app()
        async with TestServer(app) as server:
            kernel = await JupyterKernel.start(settings_for(server), ready_timeout_s=5)
            try:
                assert kernel.id == "kernel-1"
                assert kernel.connected
                assert app[JUPYTER_STATE]["kernels"] == {"kernel-1": "python3"}

                future = await kernel.request_execute("print(1)")
                messages = await collect(future)
                reply = await future.wait_reply()

                await kernel.restart()
            finally:
                await kernel.shutdown()

            assert app[JUPYTER_STATE]["deleted"] == ["kernel-1"]

        streams = [m["content"]["text"] for m in messages if m["header"]["msg_type"] == "stream"]
        assert streams == ["ran: print(1)\n"]
        assert reply["status"] == "ok"
        assert app[JUPYTER_STATE]["executed"] == ["print(1)"]
        assert app[JUPYTER_STATE]["restarts"] == 1
        assert not kernel.connected

    @pytest.mark.asyncio
    async def test_custom_kernel_type(self):
        app = jupyter_app()
        async with TestServer(app) as server:
            kernel = await JupyterKernel.start(
                settings_for(server), kernel_type="ir", ready_timeout_s=5
            )
            await kernel.close()

        assert app[JUPYTER_STATE]["kernels"] == {"kernel-1": "ir"}

    @pytest.mark.asyncio
    async def test_bad_token_is_rejected(self):
        async with TestServer(jupyter_app()) as server:
            with pytest.raises(KernelServiceHTTPError) as excinfo:
                await JupyterKernel.start(settings_for(server, token="wrong"))

        assert excinfo.value.status == 403
        assert excinfo.value.method == "POST"

    @pytest.mark.asyncio
    async def test_restart_failure_raises_restart_error(self):
        async with TestServer(jupyter_app(fail_restart=True)) as server:
            kernel = await JupyterKernel.start(settings_for(server), ready_timeout_s=5)
            try:
                with pytest.raises(RestartError, match="HTTP 500"):
                    await kernel.restart()
            finally:
                await kernel.close()

    @pytest.mark.asyncio
    async def test_restart_after_close_raises_restart_error(self):
        async with TestServer(jupyter_app()) as server:
            kernel = await JupyterKernel.start(settings_for(server), ready_timeout_s=5)
            await kernel.close()

            with pytest.raises(RestartError, match="is closed"):
                await kernel.restart()

    @pytest.mark.asyncio
    async def test_undecodable_error_body_is_http_error(self):
        app = jupyter_app(fail_start=True, start_error_body=b"\xff\xfe bad")
        async with TestServer(app) as server:
            with pytest.raises(KernelServiceHTTPError) as excinfo:
                await JupyterKernel.start(settings_for(server))

        assert excinfo.value.status == 500
        assert "bad" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_execute_after_close_fails_the_future(self):
        async with TestServer(jupyter_app()) as server:
            kernel = await JupyterKernel.start(settings_for(server), ready_timeout_s=5)
            await kernel.close()

            future = await kernel.request_execute("1")

        with pytest.raises(KernelChannelError):
            await collect(future)


class TestKernelConnectionManager:
    @pytest.mark.asyncio
    async def test_start_emits_ready(self, store, bus, statuses):
        launcher = FakeLauncher()
        manager = KernelConnectionManager(SessionCache(store), bus, launcher=launcher)
        settings = ConnectionSettings.from_http_url("http://1.2.3.4:8888", "abc")

        handle = await manager.start(settings)

        assert handle is launcher.kernels[0]
        assert launcher.calls == [settings]
        assert [e.status for e in statuses] == ["ready"]

    @pytest.mark.asyncio
    async def test_settings_are_cached_before_the_attempt(self, store, bus, statuses):
        """The record is written even when the start then fails."""
        launcher = FakeLauncher(error=KernelServiceHTTPError(500, method="POST", url="u"))
        cache = SessionCache(store)
        manager = KernelConnectionManager(cache, bus, launcher=launcher)
        settings = ConnectionSettings.from_http_url("http://1.2.3.4:8888", "abc")

        with pytest.raises(KernelStartError, match="Could not start kernel on http://1.2.3.4:8888"):
            await manager.start(settings)

        assert cache.load().settings == settings
        assert statuses == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [asyncio.TimeoutError(), KernelChannelError("closed"), KernelStartError("nope")],
    )
    async def test_launch_errors_become_kernel_start_errors(self, store, bus, error):
        manager = KernelConnectionManager(SessionCache(store), bus, launcher=FakeLauncher(error=error))

        with pytest.raises(KernelStartError):
            await manager.start(ConnectionSettings.from_http_url("http://h"))

    @pytest.mark.asyncio
    async def test_default_launcher_talks_to_jupyter(self, store, bus, statuses):
        async with TestServer(jupyter_app()) as server:
            manager = KernelConnectionManager(SessionCache(store), bus)
            handle = await manager.start(settings_for(server))
            await handle.shutdown()

        assert [e.status for e in statuses] == ["ready"]

    @pytest.mark.asyncio
    async def test_default_launcher_failure(self, store, bus):
        async with TestServer(jupyter_app(fail_start=True)) as server:
            manager = KernelConnectionManager(SessionCache(store), bus)
            with pytest.raises(KernelStartError, match="no kernels for you"):
                await manager.start(settings_for(server))

    @pytest.mark.asyncio
    async def test_default_launcher_undecodable_error_body(self, store, bus):
        app = jupyter_app(fail_start=True, start_error_body=b"\xff\xfe bad")
        async with TestServer(app) as server:
            manager = KernelConnectionManager(SessionCache(store), bus)
            with pytest.raises(KernelStartError, match="HTTP 500"):
                await manager.start(settings_for(server))
