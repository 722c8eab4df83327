"""Logging for ``agri_ledger``.

Library modules log through ``get_logger("agri_ledger.<module>")`` and emit
single-line ``event:key=value`` messages, e.g.::

    fetch:done category=wallet page=2 rows=10 total=47 total_pages=5 skipped=0
    normalize:skip context=wallet entity_kind=transaction missing_field=amount

Nothing is printed until an entrypoint calls :func:`configure_logging`; until
then the ``agri_ledger`` logger carries a ``NullHandler``.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

ROOT_LOGGER = "agri_ledger"
LEVEL_ENV = "AGRI_LEDGER_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s %(message)s"

_CONFIGURED = False


def resolve_level(level: int | str | None) -> int:
    """Map ``level`` (or ``$AGRI_LEDGER_LOG_LEVEL`` when ``None``) to a number.

    Unrecognized names fall back to INFO rather than failing startup.
    """

    if level is None:
        level = os.getenv(LEVEL_ENV) or logging.INFO
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    return logging.getLevelNamesMapping().get(name, logging.INFO)


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str = LOG_FORMAT,
    stream: IO[str] = sys.stderr,
) -> None:
    """Install the one stream handler on the ``agri_ledger`` logger.

    Repeated calls are no-ops, so the CLI callback and a host process can both
    call it safely. Records do not propagate to the root logger once
    configured.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    root = logging.getLogger(ROOT_LOGGER)
    for placeholder in [h for h in root.handlers if isinstance(h, logging.NullHandler)]:
        root.removeHandler(placeholder)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(fmt))
    root.addHandler(handler)
    root.setLevel(resolve_level(level))
    root.propagate = False
    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if not _CONFIGURED and not root.handlers:
        root.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["LEVEL_ENV", "ROOT_LOGGER", "configure_logging", "get_logger", "resolve_level"]
