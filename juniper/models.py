"""Shared Juniper data structures."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from juniper.errors import JuniperError

T = TypeVar("T")


@dataclass(frozen=True)
class ConnectionSettings:
    """Where a Jupyter server lives and how to authenticate against it."""

    base_url: str
    ws_url: str
    token: str = ""

    @classmethod
    def from_http_url(cls, url: str, token: str = "") -> ConnectionSettings:
        # http://host -> ws://host, https://host -> wss://host
        return cls(base_url=url, ws_url=f"ws{url[4:]}", token=token)

    @classmethod
    def from_dict(cls, data: object) -> ConnectionSettings | None:
        """Parse a persisted settings dict; return None if the shape is wrong."""
        if not isinstance(data, dict):
            return None
        base_url = data.get("baseUrl")
        ws_url = data.get("wsUrl", data.get("webSocketUrl"))
        token = data.get("token", "")
        if not isinstance(base_url, str) or not base_url:
            return None
        if not isinstance(ws_url, str) or not ws_url:
            return None
        if token is None:
            token = ""
        if not isinstance(token, str):
            return None
        return cls(base_url=base_url, ws_url=ws_url, token=token)

    def to_dict(self) -> dict[str, str]:
        return {"baseUrl": self.base_url, "wsUrl": self.ws_url, "token": self.token}


@dataclass(frozen=True)
class CachedSession:
    """Settings persisted across runs, valid until ``expires_at_ms``."""

    settings: ConnectionSettings
    expires_at_ms: int

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at_ms <= now_ms


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    error: JuniperError


Result = Union[Ok[T], Err]
