"""Shared httpx plumbing for HTTP-based provider clients."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.metrics.base import RemoteClient
from src.metrics.errors import NetworkError

logger = logging.getLogger("goalsync.metrics.clients.http")

DEFAULT_TIMEOUT_SECONDS = 30.0


class HttpRemoteClient(RemoteClient):
    """RemoteClient that talks JSON over HTTP.

    Every transport failure, non-2xx status and undecodable body surfaces as
    NetworkError so the caching wrapper can treat it as a missing sub-range.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """
        Args:
            http_client: Optional pre-configured httpx client (for testing).
            timeout:     Per-request timeout when no client is injected.
        """
        super().__init__()
        self._http_client = http_client
        self._timeout = timeout

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            if self._http_client:
                response = await self._http_client.request(
                    method, url, params=params, json=json_body, headers=headers
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(
                        method, url, params=params, json=json_body, headers=headers
                    )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise NetworkError(
                f"{self.DISPLAY_NAME} returned HTTP {status} for {url}", status_code=status
            ) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"{self.DISPLAY_NAME} request to {url} failed: {exc}") from exc
        return response

    def _decode(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise NetworkError(
                f"{self.DISPLAY_NAME} returned invalid JSON from {response.request.url}"
            ) from exc

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
    ) -> Any:
        response = await self._send(method, url, params=params, json_body=json_body)
        return self._decode(response)

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> Any:
        return await self._request_json("GET", url, params=params)

    async def _post(self, url: str, json_body: Any) -> Any:
        return await self._request_json("POST", url, json_body=json_body)
