"""Binder build-stream message normalization.

The Binder ``/build`` endpoint emits JSON payloads such as::

    {"phase": "waiting", "message": "..."}
    {"phase": "building", "message": "Step 3/9 ..."}
    {"phase": "ready", "url": "https://hub.example/user/abc/", "token": "..."}
    {"phase": "failed", "message": "..."}

Payloads are turned into tagged variants and fed to ``PhaseTracker``, which
decides which status (if any) to surface for each one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from juniper.errors import ProvisioningFailedError
from juniper.models import ConnectionSettings
from juniper.status import BUILDING, SERVER_READY

PHASE_READY = "ready"
PHASE_FAILED = "failed"


@dataclass(frozen=True)
class Building:
    """Announced locally before the stream is opened."""

    url: str


@dataclass(frozen=True)
class PhaseUpdate:
    phase: str
    message: str | None = None


@dataclass(frozen=True)
class Ready:
    settings: ConnectionSettings


@dataclass(frozen=True)
class Failed:
    payload: dict


BinderMessage = Union[Building, PhaseUpdate, Ready, Failed]


def parse_message(payload: dict) -> BinderMessage | None:
    """Parse one stream payload; None for payloads without a phase."""
    phase = payload.get("phase")
    if not isinstance(phase, str) or not phase:
        return None
    phase = phase.lower()

    if phase == PHASE_FAILED:
        return Failed(payload)

    if phase == PHASE_READY:
        url = payload.get("url")
        token = payload.get("token") or ""
        if not isinstance(url, str) or not url.startswith("http"):
            raise ProvisioningFailedError(payload, reason="ready without a server url")
        if not isinstance(token, str):
            token = str(token)
        return Ready(ConnectionSettings.from_http_url(url, token))

    message = payload.get("message")
    return PhaseUpdate(phase, message if isinstance(message, str) else None)


def phase_of(msg: BinderMessage) -> str | None:
    if isinstance(msg, PhaseUpdate):
        return msg.phase
    if isinstance(msg, Ready):
        return PHASE_READY
    if isinstance(msg, Failed):
        return PHASE_FAILED
    return None


class PhaseTracker:
    """Remembers the last phase so repeated phases are not re-announced.

    The local ``Building`` announcement is always reported and leaves the
    remembered phase alone, so a ``building`` phase from the stream still
    shows up.
    """

    def __init__(self) -> None:
        self.phase: str | None = None

    def observe(self, msg: BinderMessage) -> str | None:
        """Return the status to emit for ``msg``, or None if nothing changed."""
        if isinstance(msg, Building):
            return BUILDING
        phase = phase_of(msg)
        if phase is None or phase == self.phase:
            return None
        self.phase = phase
        return SERVER_READY if phase == PHASE_READY else phase


def status_data(msg: BinderMessage) -> dict | None:
    """Payload attached to the status event for ``msg``."""
    if isinstance(msg, Building):
        return {"binderUrl": msg.url}
    return None
