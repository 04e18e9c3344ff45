"""Structured logging helper shared by every domain service."""

from __future__ import annotations

import logging
from typing import Any


def structured_log(
    logger: logging.Logger,
    level: str,
    event: str,
    /,
    **fields: Any,
) -> None:
    """Emit a structured log entry.

    The event name travels as the log message; formatters in
    logging_config.py read it back through record.getMessage().

    Usage:
        structured_log(logger, "info", "collection.run_started", run_kind="keyword", max_pages=100)
    """
    log_method = getattr(logger, level.lower())
    log_method(event, extra=fields)
