"""Base filter contracts, one per pipeline stage.

A filter class may implement several stages by inheriting several of the
contracts below. For a stage that has both a sync and an async contract the
async one wins. Which stages a filter takes part in is decided once, when it
is instantiated (see ``resolve_capabilities``).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from stagegate.core.context import PipelineContext
    from stagegate.core.dependencies import DependencyProvider


Next = Callable[[], Awaitable["PipelineContext"]]


class Stage(str, Enum):
    AUTHORIZATION = "authorization"
    RESOURCE = "resource"
    ACTION = "action"
    EXCEPTION = "exception"
    RESULT = "result"
    ALWAYS_RUN_RESULT = "always_run_result"


class Variant(str, Enum):
    SYNC = "sync"
    ASYNC = "async"


class BaseFilter(ABC):
    name = ""
    # None sorts with settings.default_filter_order
    order: int | None = None
    # shared across requests when true; must then hold no request state
    is_reusable = False

    @property
    def filter_name(self) -> str:
        return self.name or type(self).__name__


class AuthorizationFilter(BaseFilter):
    def on_authorization(self, ctx: PipelineContext) -> None:
        """Set ``ctx.result`` to deny the request."""


class AsyncAuthorizationFilter(BaseFilter):
    async def on_authorization_async(self, ctx: PipelineContext) -> None:
        return None


class ResourceFilter(BaseFilter):
    def on_resource_executing(self, ctx: PipelineContext) -> None:
        return None

    def on_resource_executed(self, ctx: PipelineContext) -> None:
        return None


class AsyncResourceFilter(BaseFilter):
    async def on_resource_execution(self, ctx: PipelineContext, next: Next) -> None:
        await next()


class ActionFilter(BaseFilter):
    def on_action_executing(self, ctx: PipelineContext) -> None:
        return None

    def on_action_executed(self, ctx: PipelineContext) -> None:
        return None


class AsyncActionFilter(BaseFilter):
    async def on_action_execution(self, ctx: PipelineContext, next: Next) -> None:
        await next()


class ExceptionFilter(BaseFilter):
    @abstractmethod
    def on_exception(self, ctx: PipelineContext) -> None:
        """Inspect ``ctx.exception``; clear it to mark the fault handled."""


class AsyncExceptionFilter(BaseFilter):
    @abstractmethod
    async def on_exception_async(self, ctx: PipelineContext) -> None:
        ...


class ResultFilter(BaseFilter):
    def on_result_executing(self, ctx: PipelineContext) -> None:
        return None

    def on_result_executed(self, ctx: PipelineContext) -> None:
        return None


class AsyncResultFilter(BaseFilter):
    async def on_result_execution(self, ctx: PipelineContext, next: Next) -> None:
        await next()


class AlwaysRunResultFilter(ResultFilter):
    """Result filter that also runs after short-circuits and unhandled faults."""


class AsyncAlwaysRunResultFilter(AsyncResultFilter):
    """Async result filter that also runs after short-circuits and unhandled faults."""


class FilterFactory(ABC):
    """Builds filter instances; ``create_instance`` may be a coroutine."""

    is_reusable = False
    order: int | None = None

    @abstractmethod
    def create_instance(self, provider: DependencyProvider, **arguments: Any) -> Any:
        ...


_STAGE_CONTRACTS: tuple[tuple[Stage, type, type], ...] = (
    (Stage.AUTHORIZATION, AuthorizationFilter, AsyncAuthorizationFilter),
    (Stage.RESOURCE, ResourceFilter, AsyncResourceFilter),
    (Stage.ACTION, ActionFilter, AsyncActionFilter),
    (Stage.EXCEPTION, ExceptionFilter, AsyncExceptionFilter),
    (Stage.RESULT, ResultFilter, AsyncResultFilter),
    (Stage.ALWAYS_RUN_RESULT, AlwaysRunResultFilter, AsyncAlwaysRunResultFilter),
)


@dataclass(frozen=True, slots=True)
class FilterCapabilities:
    stages: MappingProxyType

    def variant(self, stage: Stage) -> Variant | None:
        return self.stages.get(stage)

    def __contains__(self, stage: object) -> bool:
        return stage in self.stages

    @property
    def is_empty(self) -> bool:
        return not self.stages


def resolve_capabilities(instance: Any) -> FilterCapabilities:
    stages: dict[Stage, Variant] = {}
    for stage, sync_contract, async_contract in _STAGE_CONTRACTS:
        if isinstance(instance, async_contract):
            stages[stage] = Variant.ASYNC
        elif isinstance(instance, sync_contract):
            stages[stage] = Variant.SYNC
    if Stage.ALWAYS_RUN_RESULT in stages:
        # an always-run filter takes part in the regular result stage through
        # the same contract it was detected with
        stages[Stage.RESULT] = stages[Stage.ALWAYS_RUN_RESULT]
    return FilterCapabilities(stages=MappingProxyType(stages))
