"""Lightweight logging helper shared by the settings and store modules."""

from __future__ import annotations

import logging
from typing import Any

_LOGGER = logging.getLogger("aiti")


def _coerce(parts: tuple[object, ...]) -> str:
    rendered = " ".join(str(part) for part in parts if part is not None)
    return rendered.strip()


def log(*parts: object, level: int = logging.INFO, **metadata: Any) -> None:
    """
    Emit a log message through the ``aiti`` logger.

    Keyword metadata is appended to the message so call sites can attach the
    user or agent identifier without building the string themselves.
    """

    message = _coerce(parts)
    if not message:
        return
    if metadata:
        message = f"{message} | {metadata}"

    if not _LOGGER.handlers and not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO)

    _LOGGER.log(level, message)


def configure_logging(level: str | int | None = None) -> None:
    """Configure the root logger once for CLI and API entry points."""

    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        level = resolved if isinstance(resolved, int) else logging.INFO
    logging.basicConfig(
        level=level or logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


__all__ = ["configure_logging", "log"]
