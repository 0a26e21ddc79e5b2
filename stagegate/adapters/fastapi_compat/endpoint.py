"""Bind pipeline targets to FastAPI routes."""

from __future__ import annotations

import asyncio
import typing
from collections.abc import Callable, Iterable
from contextlib import suppress
from typing import Any

from fastapi import APIRouter, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response

from stagegate.config.settings import settings
from stagegate.core.context import PipelineContext
from stagegate.core.dependencies import ServiceContainer
from stagegate.core.errors import (
    ConfigurationError,
    DependencyResolutionError,
    RequestCancelledError,
    StageFault,
)
from stagegate.core.pipeline import Pipeline
from stagegate.core.results import ActionResult, EmptyResult
from stagegate.core.target import TargetDescriptor
from stagegate.util.logger import logger


CLIENT_CLOSED_REQUEST = 499


def to_response(result: Any) -> Response:
    if isinstance(result, Response):
        return result
    if isinstance(result, ActionResult):
        payload = result.payload()
        if isinstance(result, EmptyResult) or payload is None:
            return Response(status_code=result.status_code, headers=result.headers)
        return JSONResponse(status_code=result.status_code, content=jsonable_encoder(payload), headers=result.headers)
    return JSONResponse(content=jsonable_encoder(result))


class StarletteResultRenderer:
    """Renders results into starlette responses and commits them to the context."""

    async def render(self, ctx: PipelineContext, result: Any) -> None:
        response = to_response(result)
        ctx.response.status_code = response.status_code
        ctx.response.headers.update({key: value for key, value in response.headers.items()})
        ctx.response.body = response
        ctx.response.mark_started()


def _error_response(status_code: int, code: str, detail: str, request_id: str | None = None) -> JSONResponse:
    body: dict[str, Any] = {
        "error": {
            "message": detail,
            "type": "stagegate_error",
            "code": code,
        },
        "error_code": code,
        "detail": detail,
    }
    headers = {settings.request_id_header: request_id} if request_id else None
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def _request_parameters(func: Callable[..., Any]) -> tuple[str, ...]:
    """Names of target parameters annotated with the starlette ``Request``."""

    try:
        hints = typing.get_type_hints(getattr(func, "__func__", func))
    except (NameError, TypeError):
        return ()
    return tuple(
        name
        for name, hint in hints.items()
        if name != "return" and isinstance(hint, type) and issubclass(hint, Request)
    )


async def _watch_disconnect(request: Request, cancellation: asyncio.Event) -> None:
    interval = settings.disconnect_poll_interval_seconds
    while not cancellation.is_set():
        await asyncio.sleep(interval)
        if await request.is_disconnected():
            logger.info("client disconnected, cancelling request path=%s", request.url.path)
            cancellation.set()
            return


class FilteredEndpoint:
    """Dispatch a request through the pipeline into ``target``.

    Path and query parameters become target arguments (path wins), and target
    parameters annotated with the starlette ``Request`` receive it. The request
    scope resolves ``Request`` as well; lower-cased headers are in
    ``ctx.items["headers"]``.
    """

    def __init__(self, pipeline: Pipeline, target: TargetDescriptor, container: ServiceContainer) -> None:
        self.pipeline = pipeline
        self.target = target
        self.container = container
        self._request_params = _request_parameters(target.func)

    async def __call__(self, request: Request) -> Response:
        services = self.container.create_scope()
        services.register_instance(Request, request)
        headers = {key.lower(): value for key, value in request.headers.items()}
        request_id = headers.get(settings.request_id_header) or None
        arguments: dict[str, Any] = {**request.query_params, **request.path_params}
        for param in self._request_params:
            arguments[param] = request

        cancellation = asyncio.Event()
        watcher = asyncio.create_task(_watch_disconnect(request, cancellation))
        try:
            ctx = await self.pipeline.invoke(
                self.target,
                services,
                arguments=arguments,
                request_id=request_id,
                cancellation=cancellation,
                items={"headers": headers, "request": request},
            )
        except (ConfigurationError, DependencyResolutionError) as exc:
            logger.error("pipeline setup failed target=%s error=%s", self.target.name, exc)
            return _error_response(500, "configuration_error", str(exc), request_id)
        except RequestCancelledError:
            return _error_response(CLIENT_CLOSED_REQUEST, "request_cancelled", "client closed request", request_id)
        except StageFault as exc:
            if isinstance(exc.original, RequestCancelledError):
                return _error_response(CLIENT_CLOSED_REQUEST, "request_cancelled", "client closed request", request_id)
            return _error_response(
                settings.fault_status_code,
                "unhandled_fault",
                f"{exc.stage}: {type(exc.original).__name__}",
                request_id,
            )
        finally:
            watcher.cancel()
            with suppress(asyncio.CancelledError):
                await watcher
            await services.close()

        if isinstance(ctx.response.body, Response):
            return ctx.response.body
        if ctx.render_cancelled:
            return Response(status_code=204)
        return to_response(ctx.result)


def add_filtered_route(
    router: APIRouter | FastAPI,
    path: str,
    func: Callable[..., Any],
    *,
    pipeline: Pipeline,
    container: ServiceContainer,
    methods: Iterable[str] = ("GET",),
    owner: type | None = None,
    name: str | None = None,
) -> FilteredEndpoint:
    target = TargetDescriptor.from_callable(func, owner=owner, name=name)
    endpoint = FilteredEndpoint(pipeline, target, container)
    # bound method so starlette wraps it as a request/response endpoint
    router.add_route(path, endpoint.__call__, methods=list(methods), name=target.name)
    logger.info("filtered route added path=%s target=%s methods=%s", path, target.name, list(methods))
    return endpoint
