"""Resource-stage result cache."""

from __future__ import annotations

import json
import time
from collections import OrderedDict
from threading import Lock
from typing import Any

from stagegate.core.context import PipelineContext
from stagegate.core.results import ActionResult
from stagegate.filters.base import ResourceFilter
from stagegate.util.logger import logger


class ResultCache:
    def __init__(self, ttl_seconds: float = 60.0, max_entries: int = 1024) -> None:
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = max(1, int(max_entries))
        self._lock = Lock()
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()

    def get(self, key: str) -> Any | None:
        now = time.monotonic()
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            expires_at, value = item
            if expires_at <= now:
                self._entries.pop(key, None)
                return None
            self._entries.move_to_end(key)
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = (time.monotonic() + self.ttl_seconds, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _snapshot(result: Any) -> Any:
    if isinstance(result, ActionResult):
        return result.model_copy(deep=True)
    return result


class ResponseCacheFilter(ResourceFilter):
    """Serves repeated calls with the same arguments from ``ResultCache``."""

    name = "response_cache"
    is_reusable = True

    def __init__(self, cache: ResultCache) -> None:
        self.cache = cache

    @staticmethod
    def cache_key(ctx: PipelineContext) -> str:
        arguments = json.dumps(ctx.arguments, sort_keys=True, default=str, ensure_ascii=False)
        return f"{ctx.target.name}:{arguments}"

    def on_resource_executing(self, ctx: PipelineContext) -> None:
        key = self.cache_key(ctx)
        cached = self.cache.get(key)
        if cached is None:
            return
        ctx.items["cache_hit"] = True
        ctx.result = _snapshot(cached)
        logger.debug("response cache hit key=%s", key)

    def on_resource_executed(self, ctx: PipelineContext) -> None:
        if ctx.exception is not None or ctx.canceled or ctx.result is None:
            return
        self.cache.set(self.cache_key(ctx), _snapshot(ctx.result))
