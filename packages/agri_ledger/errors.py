"""Exception taxonomy for the reconciliation layer.

- ``NormalizationError``: one raw row could not be mapped to its canonical
  record. The fetcher recovers by skipping and counting the row.
- ``FetchError``: the remote query for a category failed. Surfaced to the
  caller; cached data for the slot is kept and marked stale.
- ``EmptySelectionError``: a statement was requested with no sections.
- ``TransportError``: non-2xx response from the HTTP transport.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

_SNIPPET_MAX = 200


def _snippet(raw: Any) -> str:
    try:
        text = json.dumps(raw, default=str, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        text = repr(raw)
    if len(text) > _SNIPPET_MAX:
        return text[: _SNIPPET_MAX - 3] + "..."
    return text


class LedgerError(Exception):
    """Base class for all errors raised by ``agri_ledger``."""


class NormalizationError(LedgerError):
    def __init__(self, entity_kind: str, missing_field: str, raw: Mapping[str, Any] | Any) -> None:
        self.entity_kind = entity_kind
        self.missing_field = missing_field
        self.raw_snippet = _snippet(raw)
        super().__init__(
            f"cannot normalize {entity_kind}: no usable value for {missing_field!r} "
            f"in {self.raw_snippet}"
        )


class FetchError(LedgerError):
    def __init__(self, category: str, cause: BaseException) -> None:
        self.category = category
        self.cause = cause
        super().__init__(f"fetch failed for category {category!r}: {cause}")


class EmptySelectionError(LedgerError):
    def __init__(self, message: str = "select at least one statement section") -> None:
        super().__init__(message)


class TransportError(LedgerError):
    def __init__(self, status_code: int | None, message: str) -> None:
        self.status_code = status_code
        self.message = message
        prefix = f"HTTP {status_code}: " if status_code is not None else ""
        super().__init__(f"{prefix}{message}")


__all__ = [
    "EmptySelectionError",
    "FetchError",
    "LedgerError",
    "NormalizationError",
    "TransportError",
]
