"""Filter declarations and the ``use_filter`` metadata decorator."""

from __future__ import annotations

import inspect
import itertools
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Any

from stagegate.core.errors import ConfigurationError


FILTERS_ATTR = "__stagegate_filters__"

_sequence = itertools.count()


class FilterScope(IntEnum):
    GLOBAL = 0
    CLASS = 1
    METHOD = 2


class DeclarationKind(str, Enum):
    TYPE = "type"
    FACTORY = "factory"
    INSTANCE = "instance"


@dataclass(frozen=True, eq=False, slots=True)
class FilterDeclaration:
    """How to obtain one filter, and where it sits in the nesting.

    Declarations compare and hash by identity: two declarations with the same
    configuration are still two filters.
    """

    kind: DeclarationKind
    target: Any
    scope: FilterScope = FilterScope.GLOBAL
    order: int | None = None
    arguments: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    reusable: bool = False
    sequence: int = field(default_factory=lambda: next(_sequence))
    name: str = ""

    def __post_init__(self) -> None:
        if self.kind is DeclarationKind.TYPE and not inspect.isclass(self.target):
            raise ConfigurationError(f"type filter declaration needs a class, got {self.target!r}")
        if self.kind is DeclarationKind.FACTORY and not (
            callable(self.target) or hasattr(self.target, "create_instance")
        ):
            raise ConfigurationError(f"factory filter declaration needs a callable, got {self.target!r}")
        if self.kind is DeclarationKind.INSTANCE and self.target is None:
            raise ConfigurationError("instance filter declaration needs an instance")
        if self.order is not None and not isinstance(self.order, int):
            raise ConfigurationError(f"filter order must be an int, got {self.order!r}")
        if not isinstance(self.arguments, MappingProxyType):
            object.__setattr__(self, "arguments", MappingProxyType(dict(self.arguments)))
        if not self.name:
            object.__setattr__(self, "name", _display_name(self.kind, self.target))


@dataclass(frozen=True, slots=True)
class FilterPlacement:
    """One resolved occurrence of a declaration for a target.

    ``scope`` is where the declaration was found (registry, class or method),
    which can differ from the scope it was created with.
    """

    declaration: FilterDeclaration
    scope: FilterScope


def _display_name(kind: DeclarationKind, target: Any) -> str:
    if kind is DeclarationKind.INSTANCE:
        return getattr(target, "name", None) or type(target).__name__
    return getattr(target, "__name__", None) or type(target).__name__


def type_filter(
    cls: type,
    *,
    order: int | None = None,
    scope: FilterScope = FilterScope.GLOBAL,
    reusable: bool = False,
    **arguments: Any,
) -> FilterDeclaration:
    return FilterDeclaration(
        kind=DeclarationKind.TYPE,
        target=cls,
        scope=scope,
        order=order,
        arguments=arguments,
        reusable=reusable,
    )


def factory_filter(
    factory: Callable[..., Any],
    *,
    order: int | None = None,
    scope: FilterScope = FilterScope.GLOBAL,
    reusable: bool = False,
    **arguments: Any,
) -> FilterDeclaration:
    return FilterDeclaration(
        kind=DeclarationKind.FACTORY,
        target=factory,
        scope=scope,
        order=order,
        arguments=arguments,
        reusable=reusable,
    )


def instance_filter(
    instance: Any,
    *,
    order: int | None = None,
    scope: FilterScope = FilterScope.GLOBAL,
) -> FilterDeclaration:
    if order is None:
        order = getattr(instance, "order", None)
    return FilterDeclaration(
        kind=DeclarationKind.INSTANCE,
        target=instance,
        scope=scope,
        order=order,
        reusable=True,
    )


def as_declaration(item: Any, scope: FilterScope) -> FilterDeclaration:
    """Normalize a filter class or instance; declarations are kept as given.

    ``scope`` only applies to declarations created here. Where an existing
    declaration sits is recorded by ``FilterPlacement`` at resolve time.
    """

    if isinstance(item, FilterDeclaration):
        return item
    if inspect.isclass(item):
        return type_filter(item, scope=scope, order=getattr(item, "order", None))
    if item is None:
        raise ConfigurationError("filter declaration must not be None")
    return instance_filter(item, scope=scope)


def use_filter(
    item: Any,
    *,
    order: int | None = None,
    reusable: bool = False,
    **arguments: Any,
) -> Callable[[Any], Any]:
    """Attach a filter to a class (CLASS scope) or a function (METHOD scope).

    ``item`` may be a filter class, a factory declaration built with
    ``factory_filter``, or a literal instance.
    """

    def decorator(obj: Any) -> Any:
        scope = FilterScope.CLASS if inspect.isclass(obj) else FilterScope.METHOD
        if isinstance(item, FilterDeclaration):
            declaration = item
        elif inspect.isclass(item):
            declaration = type_filter(
                item,
                order=order if order is not None else getattr(item, "order", None),
                scope=scope,
                reusable=reusable,
                **arguments,
            )
        else:
            declaration = instance_filter(item, order=order, scope=scope)
        # own list per object so subclasses do not append to their parents
        existing = list(obj.__dict__.get(FILTERS_ATTR, ()))
        # decorators apply bottom-up; prepend to keep source order
        existing.insert(0, declaration)
        setattr(obj, FILTERS_ATTR, tuple(existing))
        return obj

    return decorator


def declared_filters(obj: Any) -> tuple[FilterDeclaration, ...]:
    if obj is None:
        return ()
    if inspect.isclass(obj):
        # base class filters first, then the subclass' own
        collected: list[FilterDeclaration] = []
        for klass in reversed(obj.__mro__):
            collected.extend(klass.__dict__.get(FILTERS_ATTR, ()))
        return tuple(collected)
    own = getattr(obj, "__dict__", {}).get(FILTERS_ATTR)
    if own is None:
        # bound methods keep metadata on the underlying function
        func = getattr(obj, "__func__", None)
        own = getattr(func, "__dict__", {}).get(FILTERS_ATTR) if func is not None else None
    return tuple(own or ())
