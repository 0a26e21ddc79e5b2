from fastapi import APIRouter, FastAPI, Request
from fastapi.testclient import TestClient
from pydantic import BaseModel

from stagegate.adapters.fastapi_compat.endpoint import StarletteResultRenderer, add_filtered_route, to_response
from stagegate.core.declarations import type_filter, use_filter
from stagegate.core.dependencies import ServiceContainer
from stagegate.core.pipeline import Pipeline
from stagegate.core.registry import FilterRegistry
from stagegate.core.results import EmptyResult, ObjectResult, StatusCodeResult
from stagegate.filters.authorization import ApiKeyAuthorizationFilter, ApiKeyStore
from stagegate.filters.base import ResourceFilter, ResultFilter
from stagegate.filters.exception_mapping import ExceptionMappingFilter
from stagegate.filters.timing import RequestIdHeaderFilter
from stagegate.filters.validation import ValidateArgumentsFilter


class ItemQuery(BaseModel):
    item_id: int
    verbose: bool = False


class Unregistered:
    pass


class NeedsUnregistered(ResultFilter):
    def __init__(self, dependency: Unregistered):
        self.dependency = dependency


class SkipRender(ResultFilter):
    def on_result_executing(self, ctx):
        ctx.canceled = True


@use_filter(ApiKeyAuthorizationFilter)
class ItemHandlers:
    @use_filter(ValidateArgumentsFilter, model=ItemQuery)
    def get(self, item_id, verbose):
        if item_id == 404:
            raise LookupError("no such item")
        if item_id == 500:
            raise RuntimeError("storage offline")
        return {"id": item_id, "verbose": verbose}


def whoami(request: Request):
    return {"path": request.url.path}


class RecoverWithFallback(ResourceFilter):
    def on_resource_executed(self, ctx):
        if ctx.exception is not None:
            ctx.result = ObjectResult(value={"fallback": True})
            ctx.mark_exception_handled()


@use_filter(RecoverWithFallback)
def flaky():
    raise ConnectionError("upstream reset")


@use_filter(NeedsUnregistered)
def broken_setup():
    return "never"


@use_filter(SkipRender)
def silent():
    return "rendered elsewhere"


def _client() -> TestClient:
    container = ServiceContainer()
    container.register_instance(ApiKeyStore, ApiKeyStore(["secret"]))
    registry = FilterRegistry()
    registry.register_global(type_filter(RequestIdHeaderFilter, reusable=True))
    registry.register_global(type_filter(ExceptionMappingFilter, order=10))
    pipeline = Pipeline(registry, renderer=StarletteResultRenderer())

    app = FastAPI()
    router = APIRouter()
    handlers = ItemHandlers()
    add_filtered_route(router, "/items/{item_id}", handlers.get, pipeline=pipeline, container=container)
    add_filtered_route(router, "/whoami", whoami, pipeline=pipeline, container=container)
    add_filtered_route(router, "/broken", broken_setup, pipeline=pipeline, container=container)
    add_filtered_route(router, "/silent", silent, pipeline=pipeline, container=container)
    add_filtered_route(router, "/flaky", flaky, pipeline=pipeline, container=container)
    app.include_router(router)
    return TestClient(app)


def test_authorized_request_runs_target_with_validated_arguments():
    client = _client()

    resp = client.get("/items/7?verbose=true", headers={"x-api-key": "secret", "x-request-id": "abc"})

    assert resp.status_code == 200
    assert resp.json() == {"id": 7, "verbose": True}
    assert resp.headers["x-request-id"] == "abc"


def test_missing_api_key_is_rejected_with_request_id():
    client = _client()

    resp = client.get("/items/7")

    assert resp.status_code == 401
    assert resp.json()["title"] == "missing_api_key"
    assert resp.headers["x-request-id"]


def test_invalid_arguments_return_problem():
    client = _client()

    resp = client.get("/items/seven", headers={"x-api-key": "secret"})

    assert resp.status_code == 400
    assert resp.json()["errors"][0]["loc"] == "item_id"


def test_mapped_fault_becomes_problem_response():
    client = _client()

    resp = client.get("/items/404", headers={"x-api-key": "secret"})

    assert resp.status_code == 404
    assert resp.json()["title"] == "lookup_error"


def test_unhandled_fault_becomes_error_payload():
    client = _client()

    resp = client.get("/items/500", headers={"x-api-key": "secret", "x-request-id": "r-500"})

    assert resp.status_code == 500
    body = resp.json()
    assert body["error_code"] == "unhandled_fault"
    assert body["error"]["type"] == "stagegate_error"
    assert "RuntimeError" in body["detail"]
    assert resp.headers["x-request-id"] == "r-500"


def test_request_parameter_receives_starlette_request():
    client = _client()

    resp = client.get("/whoami")

    assert resp.status_code == 200
    assert resp.json() == {"path": "/whoami"}


def test_dependency_failure_becomes_configuration_error():
    client = _client()

    resp = client.get("/broken")

    assert resp.status_code == 500
    assert resp.json()["error_code"] == "configuration_error"


def test_cancelled_rendering_returns_empty_response():
    client = _client()

    resp = client.get("/silent")

    assert resp.status_code == 204
    assert resp.content == b""


def test_to_response_conventions():
    assert to_response(EmptyResult()).status_code == 204
    assert to_response(StatusCodeResult(status_code=202)).status_code == 202
    json_resp = to_response(ObjectResult(value={"a": 1}, headers={"x-k": "v"}))
    assert json_resp.status_code == 200
    assert json_resp.body == b'{"a":1}'
    assert json_resp.headers["x-k"] == "v"
    assert to_response([1, 2]).body == b"[1,2]"


def test_result_recovered_by_resource_filter_is_rendered():
    client = _client()

    resp = client.get("/flaky", headers={"x-request-id": "r-flaky"})

    assert resp.status_code == 200
    assert resp.json() == {"fallback": True}
