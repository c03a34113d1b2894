"""Binder provisioning: build stream -> connection settings."""

from __future__ import annotations

import contextlib
import logging

import aiohttp

from juniper.binder.client import BinderClient
from juniper.binder.protocol import (
    Building,
    Failed,
    PhaseTracker,
    Ready,
    parse_message,
    status_data,
)
from juniper.errors import ProvisioningFailedError, ProvisioningTransportError
from juniper.models import ConnectionSettings
from juniper.status import FAILED, StatusEventBus

log = logging.getLogger("juniper.binder")


class BinderProvisioner:
    """Requests a Binder server and waits for it to become ready.

    No retry happens here; callers that want one call ``request`` again.
    """

    def __init__(self, client: BinderClient, bus: StatusEventBus):
        self._client = client
        self._bus = bus

    @property
    def client(self) -> BinderClient:
        return self._client

    async def request(self, repository: str, branch: str) -> ConnectionSettings:
        url = self._client.build_url(repository, branch)
        tracker = PhaseTracker()
        announce = Building(url)
        self._bus.emit(tracker.observe(announce), status_data(announce))
        log.info(f"Requesting Binder: {url}")

        try:
            async with aiohttp.ClientSession() as session:
                async with contextlib.aclosing(
                    self._client.iter_messages(session, url)
                ) as messages:
                    async for payload in messages:
                        msg = parse_message(payload)
                        if msg is None:
                            continue

                        status = tracker.observe(msg)
                        if status:
                            self._bus.emit(status)

                        if isinstance(msg, Failed):
                            raise ProvisioningFailedError(msg.payload)
                        if isinstance(msg, Ready):
                            log.info(f"Binder ready at {msg.settings.base_url}")
                            return msg.settings
        except ProvisioningTransportError as e:
            log.warning(f"Binder stream failed: {e}")
            self._bus.emit(FAILED)
            raise
        except ProvisioningFailedError as e:
            log.warning(str(e))
            raise

        self._bus.emit(FAILED)
        raise ProvisioningTransportError(url, "stream ended before the server was ready")
