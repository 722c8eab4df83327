"""HTTP transport for the admin backend.

The fetching layer depends only on the :class:`Transport` protocol. Tests
substitute a scripted fake; production code uses :class:`HttpxTransport`.

Environment
-----------
- ``AGRI_LEDGER_API_URL``: backend base URL (required for ``from_env``)
- ``AGRI_LEDGER_API_TOKEN``: bearer token (optional)
- ``AGRI_LEDGER_HTTP_TIMEOUT``: request timeout in seconds (default 30)
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from types import TracebackType
from typing import Any, Protocol

import httpx

from .errors import TransportError
from .logging_setup import get_logger

_logger = get_logger("agri_ledger.transport")

_DEFAULT_TIMEOUT_S = 30.0


class Transport(Protocol):
    async def get(self, path: str, params: Mapping[str, Any] | None = None) -> Any: ...

    async def post(self, path: str, json: Any = None) -> Any: ...

    async def patch(self, path: str, json: Any = None) -> Any: ...


def _api_base_url() -> str:
    url = os.getenv("AGRI_LEDGER_API_URL")
    if not url or not url.strip():
        raise RuntimeError("AGRI_LEDGER_API_URL is not set")
    return url.strip().rstrip("/")


def _api_token() -> str | None:
    token = os.getenv("AGRI_LEDGER_API_TOKEN")
    return token.strip() if token and token.strip() else None


def _http_timeout() -> float:
    raw = os.getenv("AGRI_LEDGER_HTTP_TIMEOUT")
    if raw is None or not raw.strip():
        return _DEFAULT_TIMEOUT_S
    try:
        value = float(raw)
    except ValueError as exc:
        raise RuntimeError(f"AGRI_LEDGER_HTTP_TIMEOUT must be a number, got {raw!r}") from exc
    if value <= 0:
        raise RuntimeError("AGRI_LEDGER_HTTP_TIMEOUT must be positive")
    return value


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, Mapping):
        for key in ("message", "detail", "error"):
            v = body.get(key)
            if isinstance(v, str) and v.strip():
                return v.strip()
    return response.text.strip() or response.reason_phrase or f"HTTP {response.status_code}"


class HttpxTransport:
    """Bearer-token JSON client over ``httpx.AsyncClient``.

    Usage
    -----
    async with HttpxTransport.from_env() as transport:
        body = await transport.get("/admin/transactions", params={"page": "1"})
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = _DEFAULT_TIMEOUT_S,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout),
        )

    @classmethod
    def from_env(cls) -> HttpxTransport:
        return cls(_api_base_url(), token=_api_token(), timeout=_http_timeout())

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        try:
            response = await self._client.request(method, path, params=params, json=json)
        except httpx.HTTPError as exc:
            raise TransportError(None, f"{method} {path} failed: {exc}") from exc

        if not response.is_success:
            message = _error_message(response)
            _logger.debug(
                "transport:error method=%s path=%s status=%d", method, path, response.status_code
            )
            raise TransportError(response.status_code, message)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(response.status_code, "response body is not JSON") from exc

    async def get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        return await self._request("GET", path, params=params)

    async def post(self, path: str, json: Any = None) -> Any:
        return await self._request("POST", path, json=json)

    async def patch(self, path: str, json: Any = None) -> Any:
        return await self._request("PATCH", path, json=json)

    async def aclose(self) -> None:
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> HttpxTransport:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


__all__ = ["HttpxTransport", "Transport"]
