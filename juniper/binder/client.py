"""SSE client for a Binder deployment."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator
from urllib.parse import quote

import aiohttp

from juniper.errors import ProvisioningTransportError

log = logging.getLogger("juniper.binder")


def _split_event(buf_bytes: bytearray) -> tuple[bytes | None, int]:
    """Return (event_bytes, consumed_bytes) for the next event, if any."""
    idx_nl = buf_bytes.find(b"\n\n")
    idx_crlf = buf_bytes.find(b"\r\n\r\n")
    if idx_nl == -1 and idx_crlf == -1:
        return None, 0
    if idx_crlf != -1 and (idx_nl == -1 or idx_crlf < idx_nl):
        return bytes(buf_bytes[:idx_crlf]), idx_crlf + 4
    return bytes(buf_bytes[:idx_nl]), idx_nl + 2


def decode_event(event_bytes: bytes) -> dict | None:
    """Decode one SSE event block into its JSON ``data`` payload."""
    data_lines: list[str] = []
    for raw_line in event_bytes.splitlines():
        line = raw_line.decode("utf-8", errors="replace").rstrip("\r")
        if not line or line.startswith(":"):
            continue
        if line.startswith("data:"):
            data_lines.append(line[len("data:") :].lstrip())

    if not data_lines:
        return None

    try:
        event = json.loads("\n".join(data_lines))
    except json.JSONDecodeError:
        return None
    return event if isinstance(event, dict) else None


class BinderClient:
    """HTTP + SSE transport for the Binder build API."""

    def __init__(
        self,
        service_url: str,
        *,
        connect_timeout_s: float = 10,
        max_buffer_bytes: int = 16 * 1024 * 1024,
    ):
        self.service_url = service_url.rstrip("/")
        self.connect_timeout_s = connect_timeout_s
        self.max_buffer_bytes = max_buffer_bytes

    def build_url(self, repository: str, branch: str) -> str:
        repo = quote(repository.strip().strip("/"), safe="/")
        return f"{self.service_url}/build/gh/{repo}/{quote(branch, safe='')}"

    async def iter_messages(
        self, session: aiohttp.ClientSession, url: str
    ) -> AsyncIterator[dict]:
        """Yield JSON payloads from the build stream.

        Any transport-level problem is raised as ``ProvisioningTransportError``.
        The response is released when the generator is closed.
        """
        headers = {"Accept": "text/event-stream"}
        request_timeout = aiohttp.ClientTimeout(total=None)
        try:
            resp = await asyncio.wait_for(
                session.get(url, headers=headers, timeout=request_timeout),
                timeout=self.connect_timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise ProvisioningTransportError(
                url, f"connect timed out after {self.connect_timeout_s}s"
            ) from e
        except aiohttp.ClientError as e:
            raise ProvisioningTransportError(url, f"{type(e).__name__}: {e}") from e

        async with resp:
            if resp.status >= 400:
                detail = (await resp.text(errors="replace")).strip() or resp.reason
                raise ProvisioningTransportError(url, f"HTTP {resp.status}: {detail}")
            try:
                async for payload in self.read_sse_stream(resp):
                    yield payload
            except aiohttp.ClientError as e:
                raise ProvisioningTransportError(url, f"{type(e).__name__}: {e}") from e
            except ValueError as e:
                raise ProvisioningTransportError(url, str(e)) from e

    async def read_sse_stream(self, resp: aiohttp.ClientResponse) -> AsyncIterator[dict]:
        # Read raw chunks and split on blank lines rather than readline(), which
        # raises ValueError("Chunk too big") for very long build log lines.
        buf = bytearray()

        async for chunk in resp.content.iter_any():
            if not chunk:
                continue
            buf.extend(chunk)
            if len(buf) > self.max_buffer_bytes:
                raise ValueError(f"SSE buffer too big ({len(buf)} bytes)")

            while True:
                event_bytes, consumed = _split_event(buf)
                if event_bytes is None:
                    break
                del buf[:consumed]

                if not event_bytes.strip():
                    continue

                event = decode_event(event_bytes)
                if event is not None:
                    yield event

        # If the stream ends without a trailing blank line, ignore trailing bytes.
