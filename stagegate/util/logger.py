"""Project logger; records carry the request id and target of the running pipeline."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from pathlib import Path

from stagegate.config.settings import settings


LOG_FILE_NAME = "stagegate.log"
_UNBOUND = "-"

_request_fields: ContextVar[tuple[str, str]] = ContextVar("stagegate_log_request", default=(_UNBOUND, _UNBOUND))


class RequestContextFilter(logging.Filter):
    """Stamps ``request_id`` and ``target`` onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        request_id, target = _request_fields.get()
        record.request_id = request_id
        record.target = target
        return True


@contextmanager
def bind_request(request_id: str, target: str) -> Iterator[None]:
    token = _request_fields.set((request_id, target))
    try:
        yield
    finally:
        _request_fields.reset(token)


def _level(raw: str) -> int:
    resolved = logging.getLevelName(str(raw or "INFO").strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _build_logger() -> logging.Logger:
    configured = logging.getLogger("stagegate")
    if configured.handlers:
        return configured

    level = _level(settings.log_level)
    configured.setLevel(level)
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | req=%(request_id)s target=%(target)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    context_filter = RequestContextFilter()

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_to_file:
        log_dir = Path(settings.log_dir)
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            handlers.append(
                RotatingFileHandler(
                    log_dir / LOG_FILE_NAME,
                    maxBytes=settings.log_max_bytes,
                    backupCount=settings.log_backup_count,
                    encoding="utf-8",
                )
            )
        except OSError:
            # unwritable log dir: stderr only
            pass

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)
        configured.addHandler(handler)
    configured.propagate = False
    return configured


logger = _build_logger()
