from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx

from .errors import DecodeError, HttpError, NetworkError

logger = logging.getLogger(__name__)


class ApiClient:
    """Thin httpx wrapper shared by the auth, request and streaming layers.

    Knows how to build URLs, attach a bearer token and turn a response into
    JSON or a typed error. It never refreshes anything by itself.
    """

    def __init__(
        self,
        base_url: str,
        timeout_sec: float = 8.0,
        stream_timeout_sec: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout_sec
        self.stream_timeout = stream_timeout_sec
        self.transport = transport

    def url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.base_url}{path}"

    def _headers(self, access: Optional[str]) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if access:
            headers["Authorization"] = f"Bearer {access}"
        return headers

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self.transport)

    async def request(
        self,
        method: str,
        path: str,
        access: Optional[str] = None,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> httpx.Response:
        try:
            async with self._client(self.timeout) as client:
                return await client.request(
                    method, self.url(path), headers=self._headers(access), params=params, json=json
                )
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

    @asynccontextmanager
    async def stream(
        self,
        method: str,
        path: str,
        access: Optional[str] = None,
        json: Optional[dict] = None,
    ) -> AsyncIterator[httpx.Response]:
        headers = self._headers(access)
        headers["Accept"] = "text/event-stream"
        async with self._client(self.stream_timeout) as client:
            async with client.stream(method, self.url(path), headers=headers, json=json) as r:
                yield r

    @staticmethod
    def error_message(r: httpx.Response) -> Optional[str]:
        try:
            body = r.json()
        except (ValueError, httpx.ResponseNotRead):
            return None
        if isinstance(body, dict):
            for field in ("message", "error", "detail"):
                value = body.get(field)
                if isinstance(value, str) and value:
                    return value
        return None

    def decode(self, r: httpx.Response) -> Any:
        """JSON body of a successful response, ``{}`` for an empty one."""
        if not r.is_success:
            raise HttpError(r.status_code, self.error_message(r))

        if r.status_code == 204 or r.headers.get("content-length") == "0" or not r.content:
            return {}

        try:
            return r.json()
        except ValueError as e:
            logger.warning("failed to parse JSON response from %s: %s", r.request.url, e)
            raise DecodeError(f"Invalid JSON in response from {r.request.url}") from e
