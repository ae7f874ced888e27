"""Logging helpers for the settlement engine."""

from __future__ import annotations

import logging
from typing import Iterable

AUDIT_LOGGER_NAME = "fplcontest.settlement.audit"


def configure_logging(level: int | str = logging.INFO, handlers: Iterable[logging.Handler] | None = None) -> None:
    """Configure root logging for command-line runs.

    Audit events (``settlement.completed``, ``pot.advanced`` and friends) go
    through the ``fplcontest.settlement.audit`` logger and share this format.
    """

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError("Unknown log level")
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=list(handlers) if handlers else None,
    )


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER_NAME)


__all__ = ["AUDIT_LOGGER_NAME", "configure_logging", "get_audit_logger"]
