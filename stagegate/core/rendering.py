"""Result rendering collaborators."""

from __future__ import annotations

from typing import Any, Protocol

from stagegate.core.context import PipelineContext
from stagegate.core.results import ActionResult


class ResultRenderer(Protocol):
    async def render(self, ctx: PipelineContext, result: Any) -> None:
        ...


class ContextResultRenderer:
    """Commits the result into ``ctx.response``; transports read it from there."""

    async def render(self, ctx: PipelineContext, result: Any) -> None:
        if isinstance(result, ActionResult):
            ctx.response.status_code = result.status_code
            ctx.response.headers.update(result.headers)
            ctx.response.body = result.payload()
        else:
            ctx.response.status_code = 200
            ctx.response.body = result
        ctx.response.mark_started()
