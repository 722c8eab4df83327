"""Scripted stand-in for :class:`agri_ledger.transport.HttpxTransport`.

Tests register responses per route. Each response is either a JSON body, an
exception instance to raise, or a callable receiving the query params and
returning one of those. Responses for a route are consumed in order; the last
one repeats.

A response can be held on an ``asyncio.Event`` (``gate``) so tests can
interleave concurrent fetches and control which completes first. Every call
is recorded in ``calls`` as ``(method, path, params)``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any


@dataclass
class Scripted:
    body: Any
    gate: asyncio.Event | None = None


class FakeTransport:
    def __init__(self) -> None:
        self._routes: dict[str, list[Scripted]] = {}
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.closed = False

    def add(self, path: str, body: Any, *, gate: asyncio.Event | None = None) -> FakeTransport:
        self._routes.setdefault(path, []).append(Scripted(body=body, gate=gate))
        return self

    def calls_for(self, path: str) -> list[dict[str, Any]]:
        return [params for _, p, params in self.calls if p == path]

    async def _respond(self, method: str, path: str, params: Mapping[str, Any] | None) -> Any:
        recorded = dict(params or {})
        self.calls.append((method, path, recorded))
        script = self._routes.get(path)
        if not script:
            raise AssertionError(f"unexpected {method} {path}")
        item = script.pop(0) if len(script) > 1 else script[0]
        if item.gate is not None:
            await item.gate.wait()
        body = item.body(recorded) if callable(item.body) else item.body
        if isinstance(body, BaseException):
            raise body
        return body

    async def get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        return await self._respond("GET", path, params)

    async def post(self, path: str, json: Any = None) -> Any:
        return await self._respond("POST", path, None)

    async def patch(self, path: str, json: Any = None) -> Any:
        return await self._respond("PATCH", path, None)

    async def __aenter__(self) -> FakeTransport:
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.closed = True


def page_body(
    rows: list[Any],
    *,
    total: int | None = None,
    page: int | None = None,
    total_pages: int | None = None,
) -> dict[str, Any]:
    """Backend envelope ``{"success": true, "data": {"data": rows, ...}}``."""

    inner: dict[str, Any] = {"data": rows}
    if total is not None:
        inner["total"] = total
    if page is not None:
        inner["page"] = page
    if total_pages is not None:
        inner["totalPages"] = total_pages
    return {"success": True, "data": inner}


def by_page(bodies: Mapping[int, Any]) -> Callable[[dict[str, Any]], Any]:
    """Route response keyed on the requested ``page`` query param."""

    return lambda params: bodies[int(params["page"])]


def wallet_tx(
    tx_id: str,
    amount: int,
    *,
    tx_type: str = "deposit",
    status: str = "completed",
    **extra: Any,
) -> dict[str, Any]:
    row: dict[str, Any] = {
        "_id": tx_id,
        "amount": amount,
        "type": tx_type,
        "status": status,
        "reference": f"REF-{tx_id}",
        "createdAt": "2024-03-01T10:00:00.000Z",
        "user": {"id": "u1", "name": "Ada Obi"},
    }
    row.update(extra)
    return row
