"""Pipeline event log lines."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from stagegate.util.logger import logger


def format_fields(fields: Mapping[str, object]) -> str:
    """``key=value`` pairs in key order; ``None`` values are dropped."""

    parts = []
    for key in sorted(fields):
        value = fields[key]
        if value is None:
            continue
        text = str(value)
        parts.append(f"{key}={text!r}" if " " in text else f"{key}={text}")
    return " ".join(parts)


def log_event(event: str, *, level: int = logging.INFO, **fields: object) -> None:
    """Log a pipeline event; request id and target come from ``bind_request``."""

    if not logger.isEnabledFor(level):
        return
    logger.log(level, "event=%s %s", event, format_fields(fields))
