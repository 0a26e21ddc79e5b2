"""Argument validation with pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, ValidationError

from stagegate.core.context import PipelineContext
from stagegate.core.results import ProblemResult
from stagegate.filters.base import ActionFilter
from stagegate.util.logger import logger


class ValidateArgumentsFilter(ActionFilter):
    """Validates ``ctx.arguments`` against ``model`` and replaces them with the coerced values."""

    name = "validate_arguments"

    def __init__(self, model: type[BaseModel]) -> None:
        self.model = model

    def on_action_executing(self, ctx: PipelineContext) -> None:
        try:
            validated = self.model.model_validate(ctx.arguments)
        except ValidationError as exc:
            errors = [
                {
                    "loc": ".".join(str(part) for part in item["loc"]),
                    "msg": item["msg"],
                    "type": item["type"],
                }
                for item in exc.errors()
            ]
            ctx.result = ProblemResult(status_code=400, title="validation_failed", errors=errors)
            logger.info(
                "argument validation failed model=%s errors=%d",
                self.model.__name__,
                len(errors),
            )
            return
        ctx.arguments.update(validated.model_dump())
