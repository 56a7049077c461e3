"""Docker runtime client — Docker Engine HTTP API over the daemon's unix socket."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx
from loguru import logger

from arkbackup.errors import ContainerNotFoundError, RuntimeClientError
from arkbackup.runtime.base import RuntimeClient

_DEFAULT_SOCKET = "/var/run/docker.sock"
_API_BASE = "http://docker"  # Host is ignored when talking over the socket
_REQUEST_TIMEOUT = 10.0


class DockerRuntimeClient(RuntimeClient):
    """Controls one container through the Docker Engine API."""

    def __init__(
        self,
        container_name: str,
        socket_path: str = _DEFAULT_SOCKET,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._container_name = container_name
        self._client = httpx.AsyncClient(
            base_url=_API_BASE,
            transport=transport or httpx.AsyncHTTPTransport(uds=socket_path),
            timeout=_REQUEST_TIMEOUT,
        )

    @property
    def container_name(self) -> str:
        return self._container_name

    @property
    def _container_path(self) -> str:
        return f"/containers/{quote(self._container_name, safe='')}"

    async def _request(
        self, method: str, path: str, *, timeout: float | None = None, **kwargs: Any
    ) -> httpx.Response:
        try:
            return await self._client.request(
                method, path, timeout=timeout or _REQUEST_TIMEOUT, **kwargs
            )
        except httpx.HTTPError as e:
            logger.error(f"Docker API request failed: {method} {path}: {e}")
            raise RuntimeClientError(f"Docker API request failed: {e}") from e

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.status_code == 404:
            raise ContainerNotFoundError(self._container_name)
        if resp.status_code >= 400:
            raise RuntimeClientError(
                f"Docker API error {resp.status_code}: {_error_message(resp)}"
            )

    async def inspect(self) -> str | None:
        resp = await self._request("GET", f"{self._container_path}/json")
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp)
        return resp.json().get("State", {}).get("Status", "unknown")

    async def _require_status(self) -> str:
        status = await self.inspect()
        if status is None:
            raise ContainerNotFoundError(self._container_name)
        return status

    async def start(self) -> str:
        # 304 = already started
        resp = await self._request("POST", f"{self._container_path}/start")
        if resp.status_code != 304:
            self._raise_for_status(resp)
        return await self._require_status()

    async def stop(self, timeout_seconds: int) -> str:
        # The daemon waits up to t seconds before killing; keep the HTTP call alive longer
        resp = await self._request(
            "POST",
            f"{self._container_path}/stop",
            params={"t": timeout_seconds},
            timeout=timeout_seconds + _REQUEST_TIMEOUT,
        )
        if resp.status_code != 304:
            self._raise_for_status(resp)
        return await self._require_status()

    async def close(self) -> None:
        await self._client.aclose()


def _error_message(resp: httpx.Response) -> str:
    try:
        return resp.json().get("message", resp.text)
    except ValueError:
        return resp.text
