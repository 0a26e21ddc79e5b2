"""The "next" delegate handed to async stage filters."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from stagegate.core.context import PipelineContext
from stagegate.core.errors import ContinuationMisuseError


class Continuation:
    """Runs everything inward of one filter, at most once.

    Never awaiting it is how an async filter short-circuits.
    """

    __slots__ = ("_ctx", "_inner", "_owner", "_calls", "_completed")

    def __init__(self, ctx: PipelineContext, inner: Callable[[], Awaitable[None]], owner: str) -> None:
        self._ctx = ctx
        self._inner = inner
        self._owner = owner
        self._calls = 0
        self._completed = False

    @property
    def invoked(self) -> bool:
        return self._calls > 0

    @property
    def completed(self) -> bool:
        return self._completed

    async def __call__(self) -> PipelineContext:
        # counted before awaiting so a concurrent second call is caught too
        self._calls += 1
        if self._calls > 1:
            raise ContinuationMisuseError(
                f"filter {self._owner} invoked its continuation {self._calls} times"
            )
        await self._inner()
        self._completed = True
        return self._ctx
