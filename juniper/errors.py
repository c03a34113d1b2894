"""Juniper exceptions.

These exception types let the execution controller tell failures apart
(provisioning vs. kernel start vs. restart) without scraping strings.
"""

from __future__ import annotations

import json


class JuniperError(RuntimeError):
    """Base class for orchestrator errors."""


class ConfigError(JuniperError):
    """Invalid or incomplete configuration."""


class StorageError(JuniperError):
    """The durable key-value store could not be read or written."""


class ProvisioningTransportError(JuniperError):
    """The provisioning event stream failed at the transport level."""

    def __init__(self, url: str, detail: str | None = None):
        self.url = url
        self.detail = detail
        super().__init__(self.__str__())

    def __str__(self) -> str:
        detail = (self.detail or "").strip()
        if detail:
            return f"Binder stream {self.url} failed: {detail}"
        return f"Binder stream {self.url} failed"


class ProvisioningFailedError(JuniperError):
    """The provisioning service reported the ``failed`` phase."""

    def __init__(self, payload: dict, *, reason: str | None = None):
        self.payload = payload
        self.reason = reason
        super().__init__(self.__str__())

    @property
    def message(self) -> str | None:
        value = self.payload.get("message")
        return value if isinstance(value, str) else None

    def __str__(self) -> str:
        if self.reason:
            return f"Binder build failed: {self.reason}"
        if self.message:
            return f"Binder build failed: {self.message.strip()}"
        preview = json.dumps(self.payload, ensure_ascii=True)[:200]
        return f"Binder build failed (payload={preview})"


class KernelServiceHTTPError(JuniperError):
    """HTTP error from the Jupyter server REST API."""

    def __init__(
        self,
        status: int,
        *,
        method: str,
        url: str,
        detail: str | None = None,
    ):
        self.status = int(status)
        self.method = method
        self.url = url
        self.detail = detail
        super().__init__(self.__str__())

    def __str__(self) -> str:
        detail = (self.detail or "").strip()
        if detail:
            return f"Jupyter HTTP {self.status} {self.method} {self.url}: {detail}"
        return f"Jupyter HTTP {self.status} {self.method} {self.url}"


class KernelChannelError(JuniperError):
    """The kernel WebSocket channel closed or rejected a message."""


class KernelStartError(JuniperError):
    """The kernel service rejected the start request or was unreachable."""


class RestartError(JuniperError):
    """Resetting the kernel before an isolated run failed."""
