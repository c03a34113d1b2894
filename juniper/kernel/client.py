"""HTTP client for the Jupyter server kernels API."""

from __future__ import annotations

import json
import logging
from urllib.parse import urlencode

import aiohttp

from juniper.errors import KernelServiceHTTPError
from juniper.models import ConnectionSettings

log = logging.getLogger("juniper.kernel")


class KernelServiceClient:
    """REST + WebSocket endpoints of one Jupyter server."""

    def __init__(self, settings: ConnectionSettings):
        self.settings = settings

    @property
    def headers(self) -> dict[str, str]:
        if not self.settings.token:
            return {}
        return {"Authorization": f"token {self.settings.token}"}

    def _make_url(self, path: str) -> str:
        return f"{self.settings.base_url.rstrip('/')}{path}"

    def channels_url(self, kernel_id: str, session_id: str) -> str:
        query = {"session_id": session_id}
        if self.settings.token:
            query["token"] = self.settings.token
        base = self.settings.ws_url.rstrip("/")
        return f"{base}/api/kernels/{kernel_id}/channels?{urlencode(query)}"

    async def request_json(
        self, session: aiohttp.ClientSession, method: str, url: str, **kwargs
    ) -> object | None:
        headers = {**self.headers, **kwargs.pop("headers", {})}
        async with session.request(method, url, headers=headers, **kwargs) as resp:
            if resp.status == 204:
                return None
            text = await resp.text(errors="replace")
            if resp.status >= 400:
                detail = text.strip() or resp.reason
                raise KernelServiceHTTPError(
                    resp.status, method=method, url=url, detail=detail
                )
            if not text:
                return None
            try:
                return json.loads(text)
            except json.JSONDecodeError:
                return text

    async def start_kernel(self, session: aiohttp.ClientSession, kernel_type: str) -> str:
        url = self._make_url("/api/kernels")
        response = await self.request_json(session, "POST", url, json={"name": kernel_type})
        if isinstance(response, dict):
            kernel_id = response.get("id")
            if isinstance(kernel_id, str) and kernel_id:
                log.info(f"Started {kernel_type} kernel {kernel_id}")
                return kernel_id
        raise KernelServiceHTTPError(
            200, method="POST", url=url, detail="response did not include a kernel id"
        )

    async def restart_kernel(self, session: aiohttp.ClientSession, kernel_id: str) -> None:
        url = self._make_url(f"/api/kernels/{kernel_id}/restart")
        await self.request_json(session, "POST", url)

    async def shutdown_kernel(self, session: aiohttp.ClientSession, kernel_id: str) -> None:
        url = self._make_url(f"/api/kernels/{kernel_id}")
        await self.request_json(session, "DELETE", url)

    async def connect_channels(
        self, session: aiohttp.ClientSession, kernel_id: str, session_id: str
    ) -> aiohttp.ClientWebSocketResponse:
        url = self.channels_url(kernel_id, session_id)
        return await session.ws_connect(url, headers=self.headers, max_msg_size=0)
