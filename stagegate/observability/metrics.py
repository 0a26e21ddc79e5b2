"""Metrics helpers backed by the project logger."""

from __future__ import annotations

from stagegate.util.logger import logger


def emit_counter(name: str, value: int = 1, labels: dict | None = None) -> None:
    logger.info("metric counter name=%s value=%s labels=%s", name, value, labels or {})
