"""Stage pipeline executor.

Stages nest outermost first::

    authorization
      resource (pre) ............................... resource (post)
        action (pre) .. target .. action (post)
                                   exception
                                   result (pre) .. render .. result (post)

Authorization has no post-phase. Exception filters only see faults that
escaped the action stage or the target. Every other fault unwinds: the
post-phases of filters that were entered still run and see
``ctx.exception``. When a resource post-phase clears an unhandled fault the
result it leaves behind is rendered.
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from functools import partial
from threading import Lock
from typing import Any

from stagegate.config.settings import settings
from stagegate.core.context import PipelineContext
from stagegate.core.continuation import Continuation
from stagegate.core.declarations import FilterDeclaration
from stagegate.core.dependencies import DependencyProvider
from stagegate.core.errors import ConfigurationError, RequestCancelledError, StageFault
from stagegate.core.instantiator import FilterEntry, FilterInstantiator
from stagegate.core.ordering import OrderingResolver
from stagegate.core.registry import FilterRegistry
from stagegate.core.rendering import ContextResultRenderer, ResultRenderer
from stagegate.core.results import EmptyResult, coerce_result, fault_result
from stagegate.core.target import TargetDescriptor
from stagegate.filters.base import Stage, Variant
from stagegate.observability.logging import log_event
from stagegate.observability.metrics import emit_counter
from stagegate.observability.tracing import trace
from stagegate.util.logger import bind_request, logger


@dataclass(frozen=True, slots=True)
class _StageHooks:
    stage: Stage
    pre: str
    post: str
    around: str


_RESOURCE_HOOKS = _StageHooks(Stage.RESOURCE, "on_resource_executing", "on_resource_executed", "on_resource_execution")
_ACTION_HOOKS = _StageHooks(Stage.ACTION, "on_action_executing", "on_action_executed", "on_action_execution")
_RESULT_HOOKS = _StageHooks(Stage.RESULT, "on_result_executing", "on_result_executed", "on_result_execution")


@dataclass(frozen=True, slots=True)
class ExecutionPlan:
    authorization: tuple[FilterEntry, ...] = ()
    resource: tuple[FilterEntry, ...] = ()
    action: tuple[FilterEntry, ...] = ()
    exception: tuple[FilterEntry, ...] = ()
    result: tuple[FilterEntry, ...] = ()
    always_run_result: tuple[FilterEntry, ...] = ()

    @classmethod
    def build(cls, entries: Sequence[FilterEntry]) -> ExecutionPlan:
        def pick(stage: Stage) -> tuple[FilterEntry, ...]:
            return tuple(entry for entry in entries if stage in entry.capabilities)

        return cls(
            authorization=pick(Stage.AUTHORIZATION),
            resource=pick(Stage.RESOURCE),
            action=pick(Stage.ACTION),
            exception=pick(Stage.EXCEPTION),
            result=pick(Stage.RESULT),
            always_run_result=pick(Stage.ALWAYS_RUN_RESULT),
        )


class Pipeline:
    def __init__(
        self,
        registry: FilterRegistry,
        *,
        ordering: OrderingResolver | None = None,
        instantiator: FilterInstantiator | None = None,
        renderer: ResultRenderer | None = None,
    ) -> None:
        self.registry = registry
        self.ordering = ordering or OrderingResolver()
        self.instantiator = instantiator or FilterInstantiator()
        self.renderer = renderer or ContextResultRenderer()
        self._order_lock = Lock()
        self._order_cache: OrderedDict[TargetDescriptor, tuple[FilterDeclaration, ...]] = OrderedDict()

    def ordered_declarations(self, target: TargetDescriptor) -> tuple[FilterDeclaration, ...]:
        if not self.registry.frozen:
            # cached orderings would go stale if globals changed afterwards
            self.registry.freeze()
        with self._order_lock:
            cached = self._order_cache.get(target)
            if cached is not None:
                self._order_cache.move_to_end(target)
                return cached
        ordered = tuple(item.declaration for item in self.ordering.order(self.registry.resolve(target)))
        with self._order_lock:
            self._order_cache[target] = ordered
            while len(self._order_cache) > settings.order_cache_max_entries:
                self._order_cache.popitem(last=False)
        logger.debug("filters resolved target=%s filters=%s", target.name, [item.name for item in ordered])
        return ordered

    @property
    def order_cache_size(self) -> int:
        return len(self._order_cache)

    async def build_plan(self, target: TargetDescriptor, services: DependencyProvider) -> ExecutionPlan:
        entries = [await self.instantiator.instantiate(item, services) for item in self.ordered_declarations(target)]
        return ExecutionPlan.build(entries)

    async def invoke(
        self,
        target: TargetDescriptor,
        services: DependencyProvider,
        *,
        arguments: Mapping[str, Any] | None = None,
        request_id: str | None = None,
        cancellation: asyncio.Event | None = None,
        items: Mapping[str, Any] | None = None,
    ) -> PipelineContext:
        """Run the pipeline and return the finished context.

        Configuration and dependency errors surface before any stage runs.
        An unhandled fault is raised as ``StageFault``.
        """

        plan = await self.build_plan(target, services)
        ctx = PipelineContext(
            request_id=request_id or uuid.uuid4().hex,
            target=target,
            services=services,
            arguments={**target.arguments, **(arguments or {})},
            items=dict(items or {}),
        )
        if cancellation is not None:
            ctx.cancellation = cancellation
        with bind_request(ctx.request_id, target.name):
            await _PipelineRun(self, plan, ctx).run()
        return ctx

    async def execute(
        self,
        target: TargetDescriptor,
        services: DependencyProvider,
        **kwargs: Any,
    ) -> Any:
        ctx = await self.invoke(target, services, **kwargs)
        return ctx.result


class _PipelineRun:
    """State for a single execution; owned by one request."""

    def __init__(self, pipeline: Pipeline, plan: ExecutionPlan, ctx: PipelineContext) -> None:
        self.pipeline = pipeline
        self.plan = plan
        self.ctx = ctx
        self._past_exception_stage = False
        self._rendered = False
        self._render_withheld = False

    async def run(self) -> None:
        ctx = self.ctx
        trace("pipeline", resource_filters=len(self.plan.resource), action_filters=len(self.plan.action))
        if await self._run_authorization():
            await self._run_result_stage(self.plan.always_run_result, render=True)
        else:
            await self._run_chain(_RESOURCE_HOOKS, self.plan.resource, 0, self._run_inside_resources)

        if self._render_withheld and ctx.exception is None and ctx.result is not None:
            # a resource post-phase recovered from the fault
            log_event("pipeline.fault_recovered", result=type(ctx.result).__name__)
            await self._render()

        if ctx.exception is not None:
            exc = ctx.exception
            stage = ctx.exception_stage or "unknown"
            emit_counter("stagegate_unhandled_faults", labels={"stage": stage, "target": ctx.target.name})
            logger.warning(
                "unhandled fault stage=%s error=%s",
                stage,
                type(exc).__name__,
            )
            if isinstance(exc, StageFault):
                raise exc
            raise StageFault(exc, stage) from exc
        logger.debug("pipeline completed")

    async def _run_authorization(self) -> bool:
        ctx = self.ctx
        for entry in self.plan.authorization:
            ctx.raise_if_cancelled()
            ctx.record(Stage.AUTHORIZATION.value, entry.name, "pre")
            try:
                if entry.capabilities.variant(Stage.AUTHORIZATION) is Variant.ASYNC:
                    await entry.instance.on_authorization_async(ctx)
                else:
                    entry.instance.on_authorization(ctx)
            except (ConfigurationError, RequestCancelledError):
                raise
            except Exception as exc:
                # authorization denies by setting a result; raising is misuse
                logger.warning(
                    "authorization filter raised filter=%s error=%s",
                    entry.name,
                    type(exc).__name__,
                )
                raise StageFault(exc, Stage.AUTHORIZATION.value) from exc
            if ctx.result is not None:
                self._mark_short_circuit(Stage.AUTHORIZATION, entry)
                return True
        return False

    async def _run_inside_resources(self) -> None:
        ctx = self.ctx
        ctx.canceled = False
        await self._run_chain(_ACTION_HOOKS, self.plan.action, 0, self._invoke_target)
        ctx.canceled = False

        if ctx.exception is not None:
            await self._run_exception_filters()
        self._past_exception_stage = True

        if ctx.exception is not None:
            if ctx.result is None:
                ctx.result = fault_result(ctx.exception, settings.fault_status_code)
            await self._run_result_stage(self.plan.always_run_result, render=False)
            self._render_withheld = True
            return

        if ctx.result is None:
            ctx.result = EmptyResult()
        await self._run_result_stage(self.plan.result, render=True)

    async def _run_result_stage(self, filters: tuple[FilterEntry, ...], *, render: bool) -> None:
        self.ctx.canceled = False
        innermost = self._render if render else self._skip_render
        await self._run_chain(_RESULT_HOOKS, filters, 0, innermost)
        if render and not self._rendered:
            self.ctx.render_cancelled = True

    async def _run_chain(
        self,
        hooks: _StageHooks,
        filters: tuple[FilterEntry, ...],
        index: int,
        innermost: Callable[[], Awaitable[None]],
    ) -> None:
        if index == len(filters):
            await innermost()
            # inner stages may have toggled the flag; this stage was not short-circuited
            self.ctx.canceled = False
            return

        entry = filters[index]
        inner = partial(self._run_chain, hooks, filters, index + 1, innermost)
        if entry.capabilities.variant(hooks.stage) is Variant.ASYNC:
            await self._run_async_level(hooks, entry, inner)
        else:
            await self._run_sync_level(hooks, entry, inner)

    async def _run_sync_level(
        self,
        hooks: _StageHooks,
        entry: FilterEntry,
        inner: Callable[[], Awaitable[None]],
    ) -> None:
        ctx = self.ctx
        stage = hooks.stage.value
        ctx.record(stage, entry.name, "pre")
        try:
            ctx.raise_if_cancelled()
            getattr(entry.instance, hooks.pre)(ctx)
        except ConfigurationError:
            raise
        except Exception as exc:
            self._capture(exc, hooks.stage)
            return
        if self._is_short_circuit(hooks.stage):
            await self._short_circuit(hooks.stage, entry)
            return

        await inner()

        ctx.record(stage, entry.name, "post")
        try:
            getattr(entry.instance, hooks.post)(ctx)
        except ConfigurationError:
            raise
        except Exception as exc:
            self._capture(exc, hooks.stage)

    async def _run_async_level(
        self,
        hooks: _StageHooks,
        entry: FilterEntry,
        inner: Callable[[], Awaitable[None]],
    ) -> None:
        ctx = self.ctx
        continuation = Continuation(ctx, inner, entry.name)
        ctx.record(hooks.stage.value, entry.name, "around")
        try:
            ctx.raise_if_cancelled()
            await getattr(entry.instance, hooks.around)(ctx, continuation)
        except ConfigurationError:
            raise
        except Exception as exc:
            self._capture(exc, hooks.stage)
            return
        if not continuation.invoked:
            if hooks.stage is Stage.RESULT or ctx.result is not None:
                await self._short_circuit(hooks.stage, entry)
            else:
                # skipped the inner stages without producing anything
                self._mark_short_circuit(hooks.stage, entry)
                ctx.canceled = True

    def _is_short_circuit(self, stage: Stage) -> bool:
        if stage is Stage.RESULT:
            return self.ctx.canceled
        return self.ctx.result is not None

    async def _short_circuit(self, stage: Stage, entry: FilterEntry) -> None:
        ctx = self.ctx
        self._mark_short_circuit(stage, entry)
        if stage is Stage.RESOURCE and ctx.result is not None:
            await self._run_result_stage(self.plan.always_run_result, render=True)
        ctx.canceled = True

    def _mark_short_circuit(self, stage: Stage, entry: FilterEntry) -> None:
        ctx = self.ctx
        ctx.short_circuit_stage = stage.value
        emit_counter("stagegate_short_circuits", labels={"stage": stage.value})
        log_event("pipeline.short_circuit", stage=stage.value, filter=entry.name)

    def _capture(self, exc: Exception, stage: Stage) -> None:
        ctx = self.ctx
        if isinstance(exc, RequestCancelledError) and self._past_exception_stage:
            logger.info("request cancelled after exception stage, aborting")
            raise exc
        ctx.exception = exc
        ctx.exception_stage = stage.value
        logger.debug(
            "fault captured stage=%s error=%s",
            stage.value,
            exc,
            exc_info=exc,
        )

    async def _run_exception_filters(self) -> None:
        ctx = self.ctx
        trace("exception", error=type(ctx.exception).__name__)
        for entry in self.plan.exception:
            if ctx.exception is None:
                break
            ctx.record(Stage.EXCEPTION.value, entry.name, "handle")
            try:
                if entry.capabilities.variant(Stage.EXCEPTION) is Variant.ASYNC:
                    await entry.instance.on_exception_async(ctx)
                else:
                    entry.instance.on_exception(ctx)
            except ConfigurationError:
                raise
            except Exception as exc:
                self._capture(exc, Stage.EXCEPTION)
        if ctx.exception is None:
            log_event("pipeline.fault_handled", stage=ctx.exception_stage)

    async def _invoke_target(self) -> None:
        ctx = self.ctx
        func = ctx.target.func
        trace("target", offload=settings.offload_sync_targets)
        try:
            ctx.raise_if_cancelled()
            if inspect.iscoroutinefunction(func):
                value = await func(**ctx.arguments)
            elif settings.offload_sync_targets:
                value = await asyncio.to_thread(func, **ctx.arguments)
            else:
                value = func(**ctx.arguments)
            if inspect.isawaitable(value):
                value = await value
        except Exception as exc:
            self._capture(exc, Stage.ACTION)
            return
        ctx.result = coerce_result(value)

    async def _render(self) -> None:
        ctx = self.ctx
        self._rendered = True
        try:
            await self.pipeline.renderer.render(ctx, ctx.result)
        except ConfigurationError:
            raise
        except Exception as exc:
            self._capture(exc, Stage.RESULT)

    async def _skip_render(self) -> None:
        return None
