"""Request timing and request id stamping."""

from __future__ import annotations

import time

from stagegate.config.settings import settings
from stagegate.core.context import PipelineContext
from stagegate.core.results import ActionResult
from stagegate.filters.base import AlwaysRunResultFilter, AsyncResourceFilter, Next
from stagegate.observability.metrics import emit_counter
from stagegate.util.logger import logger


class RequestTimingFilter(AsyncResourceFilter):
    name = "request_timing"
    is_reusable = True

    async def on_resource_execution(self, ctx: PipelineContext, next: Next) -> None:
        started = time.perf_counter()
        try:
            await next()
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            ctx.items["elapsed_ms"] = elapsed_ms
            emit_counter("stagegate_requests", labels={"target": ctx.target.name})
            logger.info(
                "request timing elapsed_ms=%.2f fault=%s",
                elapsed_ms,
                type(ctx.exception).__name__ if ctx.exception is not None else "-",
            )


class RequestIdHeaderFilter(AlwaysRunResultFilter):
    """Stamps the request id on every result, short-circuited and faulted ones included."""

    name = "request_id_header"
    is_reusable = True

    def __init__(self, header: str | None = None) -> None:
        self.header = header or settings.request_id_header

    def on_result_executing(self, ctx: PipelineContext) -> None:
        if ctx.response.has_started or not isinstance(ctx.result, ActionResult):
            return
        ctx.result.headers[self.header] = ctx.request_id
