"""Stage span tracing backed by the project logger."""

from __future__ import annotations

from stagegate.config.settings import settings
from stagegate.observability.logging import format_fields
from stagegate.util.logger import logger


def trace(span_name: str, **fields: object) -> None:
    if not settings.trace_stages:
        return
    logger.debug("trace span=%s %s", span_name, format_fields(fields))
