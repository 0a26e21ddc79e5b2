"""Project error hierarchy."""

from __future__ import annotations


class StageGateError(Exception):
    """Base error."""


class ConfigurationError(StageGateError):
    """Raised when a filter declaration or registry setup is invalid."""


class ContinuationMisuseError(ConfigurationError):
    """Raised when an async filter invokes its continuation more than once."""


class DependencyResolutionError(StageGateError):
    """Raised when a dependency cannot be provided for a filter or service."""

    def __init__(self, message: str, *, key: object = None) -> None:
        super().__init__(message)
        self.key = key


class RequestCancelledError(StageGateError):
    """Raised inside a stage once the request has been cancelled externally."""


class StageFault(StageGateError):
    """An unhandled fault that escaped the pipeline.

    ``original`` is the exception raised by a filter or the target; ``stage``
    names the stage it was first recorded in.
    """

    def __init__(self, original: BaseException, stage: str = "unknown") -> None:
        super().__init__(f"unhandled fault in {stage} stage: {type(original).__name__}: {original}")
        self.original = original
        self.stage = stage
