"""Persisted kernel connection settings.

The record lives in a ``KeyValueStore`` under a configurable key as JSON
``{"settings": {...}, "timestamp": <expiry, epoch ms>}``. It may have been
written by another process, so every read validates shape and expiry.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Callable

from juniper.errors import StorageError
from juniper.models import CachedSession, ConnectionSettings
from juniper.storage import KeyValueStore

log = logging.getLogger("juniper.cache")


class SessionCache:
    def __init__(
        self,
        store: KeyValueStore | None,
        *,
        key: str = "juniper",
        ttl_minutes: float = 60,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self.key = key
        self.ttl_minutes = ttl_minutes
        self._enabled = enabled
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self._enabled and self._store is not None

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def load(self) -> CachedSession | None:
        """Return the cached session, or None if absent, expired or unreadable."""
        if not self.enabled:
            return None
        try:
            raw = self._store.get_item(self.key)
        except StorageError as e:
            log.warning(f"Session cache unreadable, ignoring: {e}")
            return None
        if raw is None:
            return None

        cached = self._parse(raw)
        if cached is None:
            log.info(f"Discarding malformed session record {self.key!r}")
            self.clear()
            return None
        if cached.is_expired(self._now_ms()):
            log.info(f"Session record {self.key!r} expired, removing")
            self.clear()
            return None
        return cached

    def save(
        self, settings: ConnectionSettings, ttl_minutes: float | None = None
    ) -> CachedSession | None:
        if not self.enabled:
            return None
        ttl = self.ttl_minutes if ttl_minutes is None else ttl_minutes
        cached = CachedSession(
            settings=settings,
            expires_at_ms=self._now_ms() + int(ttl * 60 * 1000),
        )
        payload = json.dumps(
            {"settings": settings.to_dict(), "timestamp": cached.expires_at_ms}
        )
        try:
            self._store.set_item(self.key, payload)
        except StorageError as e:
            log.warning(f"Could not persist session record: {e}")
            return None
        return cached

    def clear(self) -> None:
        if not self.enabled:
            return
        try:
            self._store.remove_item(self.key)
        except StorageError as e:
            log.warning(f"Could not clear session record: {e}")

    def _parse(self, raw: str) -> CachedSession | None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict):
            return None
        timestamp = data.get("timestamp")
        # bool is an int subclass; a true/false timestamp is not an expiry.
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            return None
        settings = ConnectionSettings.from_dict(data.get("settings"))
        if settings is None:
            return None
        return CachedSession(settings=settings, expires_at_ms=int(timestamp))
