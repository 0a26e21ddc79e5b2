"""Turns filter declarations into filter instances."""

from __future__ import annotations

import inspect
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any

from stagegate.config.settings import settings
from stagegate.core.declarations import DeclarationKind, FilterDeclaration
from stagegate.core.dependencies import DependencyProvider, build_instance
from stagegate.core.errors import ConfigurationError, DependencyResolutionError
from stagegate.filters.base import FilterCapabilities, resolve_capabilities
from stagegate.util.logger import logger


@dataclass(frozen=True, slots=True)
class FilterEntry:
    declaration: FilterDeclaration
    instance: Any
    capabilities: FilterCapabilities

    @property
    def name(self) -> str:
        return getattr(self.instance, "filter_name", None) or self.declaration.name


class FilterInstantiator:
    def __init__(self, max_cached: int | None = None) -> None:
        self._max_cached = max_cached or settings.reusable_cache_max_entries
        self._cache_lock = Lock()
        self._cache: OrderedDict[FilterDeclaration, FilterEntry] = OrderedDict()

    async def instantiate(self, declaration: FilterDeclaration, provider: DependencyProvider) -> FilterEntry:
        with self._cache_lock:
            cached = self._cache.get(declaration)
            if cached is not None:
                self._cache.move_to_end(declaration)
                return cached

        instance = await self._create(declaration, provider)
        capabilities = resolve_capabilities(instance)
        if capabilities.is_empty:
            raise ConfigurationError(
                f"filter {declaration.name} implements no stage contract ({type(instance).__name__})"
            )
        entry = FilterEntry(declaration=declaration, instance=instance, capabilities=capabilities)

        if self._is_reusable(declaration, instance):
            with self._cache_lock:
                self._cache[declaration] = entry
                while len(self._cache) > self._max_cached:
                    self._cache.popitem(last=False)
        return entry

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    @property
    def cached_count(self) -> int:
        return len(self._cache)

    async def _create(self, declaration: FilterDeclaration, provider: DependencyProvider) -> Any:
        if declaration.kind is DeclarationKind.INSTANCE:
            return declaration.target

        if declaration.kind is DeclarationKind.TYPE:
            try:
                return await build_instance(declaration.target, provider, declaration.arguments)
            except DependencyResolutionError as exc:
                logger.warning("filter construction failed filter=%s error=%s", declaration.name, exc)
                raise DependencyResolutionError(
                    f"cannot construct filter {declaration.name}: {exc}",
                    key=exc.key,
                ) from exc

        factory = declaration.target
        try:
            if hasattr(factory, "create_instance"):
                instance = factory.create_instance(provider, **declaration.arguments)
            else:
                instance = factory(provider, **declaration.arguments)
            if inspect.isawaitable(instance):
                instance = await instance
        except (DependencyResolutionError, ConfigurationError):
            raise
        except Exception as exc:
            raise DependencyResolutionError(
                f"filter factory {declaration.name} failed: {exc}",
                key=factory,
            ) from exc
        if instance is None:
            raise ConfigurationError(f"filter factory {declaration.name} returned None")
        return instance

    @staticmethod
    def _is_reusable(declaration: FilterDeclaration, instance: Any) -> bool:
        if declaration.reusable:
            return True
        if declaration.kind is DeclarationKind.FACTORY and getattr(declaration.target, "is_reusable", False):
            return True
        return bool(getattr(instance, "is_reusable", False))
