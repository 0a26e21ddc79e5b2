"""Result value conventions for targets and filters."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ActionResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    status_code: int = 200
    headers: dict[str, str] = Field(default_factory=dict)

    def payload(self) -> Any:
        return None


class ObjectResult(ActionResult):
    value: Any = None

    def payload(self) -> Any:
        return self.value


class EmptyResult(ActionResult):
    status_code: int = 204


class StatusCodeResult(ActionResult):
    pass


class ProblemResult(ActionResult):
    status_code: int = 500
    title: str = "error"
    detail: str | None = None
    errors: list[dict[str, Any]] = Field(default_factory=list)

    def payload(self) -> Any:
        body: dict[str, Any] = {"status": self.status_code, "title": self.title}
        if self.detail:
            body["detail"] = self.detail
        if self.errors:
            body["errors"] = self.errors
        return body


def coerce_result(value: Any) -> Any:
    """Wrap a target return value into a result."""

    if value is None:
        return EmptyResult()
    if isinstance(value, ActionResult):
        return value
    return ObjectResult(value=value)


def fault_result(exc: BaseException, status_code: int = 500) -> ProblemResult:
    return ProblemResult(
        status_code=status_code,
        title="unhandled_fault",
        detail=type(exc).__name__,
    )
