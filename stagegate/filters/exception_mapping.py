"""Map exception types to problem results."""

from __future__ import annotations

import re
from collections.abc import Mapping

from stagegate.core.context import PipelineContext
from stagegate.core.results import ProblemResult
from stagegate.filters.base import ExceptionFilter
from stagegate.util.logger import logger


DEFAULT_STATUS_MAP: dict[type[BaseException], int] = {
    PermissionError: 403,
    LookupError: 404,
    ValueError: 400,
    TimeoutError: 504,
}

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _problem_title(exc: BaseException) -> str:
    return _CAMEL_RE.sub("_", type(exc).__name__).lower()


class ExceptionMappingFilter(ExceptionFilter):
    """Handles faults whose type (or a base of it) appears in ``mapping``."""

    name = "exception_mapping"
    is_reusable = True

    def __init__(
        self,
        mapping: Mapping[type[BaseException], int] | None = None,
        include_detail: bool = False,
    ) -> None:
        self.mapping = dict(DEFAULT_STATUS_MAP if mapping is None else mapping)
        self.include_detail = include_detail

    def status_for(self, exc: BaseException) -> int | None:
        for klass in type(exc).__mro__:
            if klass in self.mapping:
                return self.mapping[klass]
        return None

    def on_exception(self, ctx: PipelineContext) -> None:
        exc = ctx.exception
        if exc is None:
            return
        status_code = self.status_for(exc)
        if status_code is None:
            return
        ctx.result = ProblemResult(
            status_code=status_code,
            title=_problem_title(exc),
            detail=str(exc) if self.include_detail else None,
        )
        ctx.mark_exception_handled()
        logger.info(
            "fault mapped error=%s status=%s",
            type(exc).__name__,
            status_code,
        )
