"""Result-stage response headers."""

from __future__ import annotations

from collections.abc import Mapping

from stagegate.core.context import PipelineContext
from stagegate.core.results import ActionResult
from stagegate.filters.base import ResultFilter
from stagegate.util.logger import logger


class ResponseHeaderFilter(ResultFilter):
    name = "response_header"
    is_reusable = True

    def __init__(self, headers: Mapping[str, str]) -> None:
        self.headers = {str(key): str(value) for key, value in headers.items()}

    def on_result_executing(self, ctx: PipelineContext) -> None:
        if ctx.response.has_started or not isinstance(ctx.result, ActionResult):
            return
        ctx.result.headers.update(self.headers)

    def on_result_executed(self, ctx: PipelineContext) -> None:
        # too late to write here; only report what did not make it out
        if not ctx.response.has_started:
            return
        missing = sorted(key for key in self.headers if key not in ctx.response.headers)
        if missing:
            logger.debug("headers not committed headers=%s", missing)
