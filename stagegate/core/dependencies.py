"""Dependency provider used to construct filters and their collaborators.

Services live in linkd containers. Singletons are registered on a root
container owned by ``ServiceContainer``; scoped services are registered on a
second registry that backs one child container per request.
"""

from __future__ import annotations

import inspect
import typing
from collections.abc import Callable, Mapping
from enum import Enum
from threading import Lock
from typing import Any, Protocol, runtime_checkable

from linkd import container as linkd_container
from linkd import exceptions as linkd_exceptions
from linkd import registry as linkd_registry

from stagegate.core.errors import ConfigurationError, DependencyResolutionError
from stagegate.util.logger import logger


_MISSING = object()


@runtime_checkable
class DependencyProvider(Protocol):
    async def resolve(self, key: Any) -> Any:
        ...


class Lifetime(str, Enum):
    SINGLETON = "singleton"
    SCOPED = "scoped"


def _key_name(key: Any) -> str:
    return getattr(key, "__qualname__", None) or getattr(key, "__name__", None) or repr(key)


async def _get(container: linkd_container.Container, key: Any) -> Any:
    try:
        return await container.get(key)
    except linkd_exceptions.DependencyInjectionException as exc:
        raise DependencyResolutionError(f"cannot resolve {_key_name(key)}: {exc}", key=key) from exc
    except Exception as exc:
        raise DependencyResolutionError(f"factory for {_key_name(key)} failed: {exc}", key=key) from exc


class ServiceContainer:
    """Process-level service registrations.

    Registration closes once the first scope (or the root) is created.
    """

    def __init__(self) -> None:
        self._registry = linkd_registry.Registry()
        self._scope_registry = linkd_registry.Registry()
        self._root: linkd_container.Container | None = None
        self._lock = Lock()

    def register_instance(self, key: Any, instance: Any) -> None:
        self._register(key, lambda: self._registry.register_value(key, instance))

    def register_factory(
        self,
        key: Any,
        factory: Callable[..., Any],
        lifetime: Lifetime | str = Lifetime.SINGLETON,
    ) -> None:
        """Register ``factory``; linkd resolves its annotated parameters."""

        if not callable(factory):
            raise ConfigurationError(f"factory for {_key_name(key)} is not callable")
        registry = self._scope_registry if Lifetime(lifetime) is Lifetime.SCOPED else self._registry
        self._register(key, lambda: registry.register_factory(key, factory))

    def register_type(
        self,
        key: type,
        implementation: type | None = None,
        lifetime: Lifetime | str = Lifetime.SINGLETON,
    ) -> None:
        impl = implementation or key
        if not inspect.isclass(impl):
            raise ConfigurationError(f"implementation for {_key_name(key)} must be a class")
        self.register_factory(key, impl, lifetime)

    def _register(self, key: Any, action: Callable[[], None]) -> None:
        with self._lock:
            if self._root is not None:
                raise ConfigurationError(f"cannot register {_key_name(key)}: services are already in use")
            try:
                action()
            except linkd_exceptions.DependencyInjectionException as exc:
                raise DependencyResolutionError(f"cannot register {_key_name(key)}: {exc}", key=key) from exc

    @property
    def root(self) -> linkd_container.Container:
        with self._lock:
            if self._root is None:
                self._root = linkd_container.Container(self._registry)
            return self._root

    def create_scope(self) -> ServiceScope:
        return ServiceScope(linkd_container.Container(self._scope_registry, parent=self.root))

    async def resolve(self, key: Any) -> Any:
        return await _get(self.root, key)

    async def close(self) -> None:
        if self._root is not None:
            await self._root.close()


class ServiceScope:
    """Request-scoped provider over a child linkd container."""

    def __init__(self, container: linkd_container.Container) -> None:
        self._container = container

    def register_instance(self, key: Any, instance: Any) -> None:
        self._container.add_value(key, instance)

    async def resolve(self, key: Any) -> Any:
        if key is ServiceScope or key is DependencyProvider:
            return self
        return await _get(self._container, key)

    async def close(self) -> None:
        await self._container.close()


async def build_instance(
    cls: type,
    provider: DependencyProvider,
    overrides: Mapping[str, Any] | None = None,
) -> Any:
    """Construct ``cls`` with literal ``overrides`` and provider-resolved services.

    A parameter the overrides do not cover is resolved by its annotation. One
    with a default keeps it when the provider cannot satisfy it. Any failure,
    including one raised by the constructor itself, is a
    ``DependencyResolutionError``.
    """

    overrides = dict(overrides or {})
    if cls.__init__ is object.__init__:
        if overrides:
            raise DependencyResolutionError(
                f"{_key_name(cls)} takes no arguments, got {sorted(overrides)}",
                key=cls,
            )
        return _construct(cls, {})

    signature = inspect.signature(cls.__init__)
    try:
        hints = typing.get_type_hints(cls.__init__)
    except (NameError, TypeError) as exc:
        raise DependencyResolutionError(
            f"cannot read constructor annotations of {_key_name(cls)}: {exc}",
            key=cls,
        ) from exc

    kwargs: dict[str, Any] = {}
    for index, (param_name, param) in enumerate(signature.parameters.items()):
        if index == 0 or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        if param_name in overrides:
            kwargs[param_name] = overrides.pop(param_name)
            continue
        annotation = hints.get(param_name, _MISSING)
        if annotation is _MISSING:
            if param.default is param.empty:
                raise DependencyResolutionError(
                    f"{_key_name(cls)}.{param_name} has no annotation and no default",
                    key=cls,
                )
            continue
        try:
            kwargs[param_name] = await provider.resolve(annotation)
        except DependencyResolutionError:
            if param.default is param.empty:
                raise
            logger.debug("dependency unresolved, using default: owner=%s param=%s", _key_name(cls), param_name)

    if overrides:
        if not any(p.kind is p.VAR_KEYWORD for p in signature.parameters.values()):
            raise DependencyResolutionError(
                f"{_key_name(cls)} got unexpected arguments {sorted(overrides)}",
                key=cls,
            )
        kwargs.update(overrides)
    return _construct(cls, kwargs)


def _construct(cls: type, kwargs: dict[str, Any]) -> Any:
    try:
        return cls(**kwargs)
    except (ConfigurationError, DependencyResolutionError):
        raise
    except Exception as exc:
        raise DependencyResolutionError(f"{_key_name(cls)} constructor failed: {exc}", key=cls) from exc
