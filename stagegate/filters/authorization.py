"""API key authorization."""

from __future__ import annotations

import hmac
from collections.abc import Iterable

from stagegate.config.settings import settings
from stagegate.core.context import PipelineContext
from stagegate.core.results import ProblemResult
from stagegate.filters.base import AuthorizationFilter
from stagegate.util.logger import logger


class ApiKeyStore:
    def __init__(self, keys: Iterable[str] = ()) -> None:
        self._keys = tuple(str(key) for key in keys if key)

    def is_valid(self, candidate: str) -> bool:
        # compare against every key so timing does not reveal which matched
        matched = False
        for key in self._keys:
            if hmac.compare_digest(key.encode("utf-8"), candidate.encode("utf-8")):
                matched = True
        return matched


class ApiKeyAuthorizationFilter(AuthorizationFilter):
    name = "api_key_authorization"

    def __init__(self, store: ApiKeyStore, header: str | None = None) -> None:
        self.store = store
        self.header = (header or settings.api_key_header).lower()

    def on_authorization(self, ctx: PipelineContext) -> None:
        headers = ctx.items.get("headers") or {}
        candidate = str(headers.get(self.header) or "").strip()
        if not candidate:
            ctx.result = ProblemResult(status_code=401, title="missing_api_key")
            logger.info("api key missing header=%s", self.header)
            return
        if not self.store.is_valid(candidate):
            ctx.result = ProblemResult(status_code=401, title="invalid_api_key")
            logger.info("api key rejected header=%s", self.header)
            return
        ctx.items["api_key_authorized"] = True
