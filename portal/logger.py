"""Lightweight logging helper shared by the portal modules."""

from __future__ import annotations

import logging
from typing import Any

_LOGGER = logging.getLogger("portal")


def _coerce(parts: tuple[object, ...]) -> str:
    rendered = " ".join(str(part) for part in parts if part is not None)
    return rendered.strip()


def log(*parts: object, **metadata: Any) -> None:
    """
    Emit an info-level log message.

    Keyword arguments are treated as structured metadata and appended to the
    message so one-line operational events (``view`` opened, ``tables``
    queried) stay greppable without a custom formatter.
    """

    message = _coerce(parts)
    if metadata:
        message = f"{message} | {metadata}"

    if not _LOGGER.handlers:
        logging.basicConfig(level=logging.INFO)

    _LOGGER.info(message)


__all__ = ["log"]
