"""Kernel connection manager.

Turns ``ConnectionSettings`` into a live ``SessionHandle`` and persists the
settings before the start attempt, so a process restarted mid-launch can
reconnect with the same server.
"""

from __future__ import annotations

import asyncio
import functools
import logging

import aiohttp

from juniper.cache import SessionCache
from juniper.errors import KernelChannelError, KernelServiceHTTPError, KernelStartError
from juniper.kernel.handle import JupyterKernel
from juniper.kernel.ports import KernelLauncher, SessionHandle
from juniper.models import ConnectionSettings
from juniper.status import READY, StatusEventBus

log = logging.getLogger("juniper.kernel")


class KernelConnectionManager:
    def __init__(
        self,
        cache: SessionCache,
        bus: StatusEventBus,
        *,
        kernel_type: str = "python3",
        launcher: KernelLauncher | None = None,
        http_timeout_s: float = 600,
        ready_timeout_s: float = 30,
    ):
        self._cache = cache
        self._bus = bus
        self.kernel_type = kernel_type
        self._launcher: KernelLauncher = launcher or functools.partial(
            JupyterKernel.start,
            kernel_type=kernel_type,
            http_timeout_s=http_timeout_s,
            ready_timeout_s=ready_timeout_s,
        )

    async def start(self, settings: ConnectionSettings) -> SessionHandle:
        # Written before the attempt; clearing on failure is the caller's call.
        self._cache.save(settings)

        log.info(f"Starting {self.kernel_type} kernel on {settings.base_url}")
        try:
            handle = await self._launcher(settings)
        except KernelStartError:
            raise
        except (
            aiohttp.ClientError,
            asyncio.TimeoutError,
            KernelServiceHTTPError,
            KernelChannelError,
        ) as e:
            raise KernelStartError(
                f"Could not start kernel on {settings.base_url}: {type(e).__name__}: {e}"
            ) from e

        self._bus.emit(READY)
        return handle
