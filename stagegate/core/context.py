"""Pipeline runtime context."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from stagegate.core.dependencies import DependencyProvider
from stagegate.core.errors import RequestCancelledError
from stagegate.core.target import TargetDescriptor


@dataclass(slots=True)
class ResponseState:
    """What the renderer has committed so far.

    Once ``has_started`` is true the response may already be on the wire and
    post-phase filters must not rely on changing it.
    """

    has_started: bool = False
    status_code: int | None = None
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None

    def mark_started(self) -> None:
        self.has_started = True


@dataclass(slots=True)
class PipelineContext:
    request_id: str
    target: TargetDescriptor
    services: DependencyProvider
    arguments: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    canceled: bool = False
    exception: BaseException | None = None
    exception_stage: str | None = None
    short_circuit_stage: str | None = None
    # a result filter cancelled rendering of the final result
    render_cancelled: bool = False
    response: ResponseState = field(default_factory=ResponseState)
    cancellation: asyncio.Event = field(default_factory=asyncio.Event)
    items: dict[str, Any] = field(default_factory=dict)
    trace: list[dict[str, str]] = field(default_factory=list)

    @property
    def is_cancellation_requested(self) -> bool:
        return self.cancellation.is_set()

    def request_cancellation(self) -> None:
        self.cancellation.set()

    def raise_if_cancelled(self) -> None:
        if self.cancellation.is_set():
            raise RequestCancelledError(f"request cancelled: request_id={self.request_id}")

    def mark_exception_handled(self) -> None:
        self.exception = None

    def record(self, stage: str, filter_name: str, phase: str) -> None:
        self.trace.append({"stage": stage, "filter": filter_name, "phase": phase})
