"""Request target descriptor."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from stagegate.core.declarations import FilterDeclaration, FilterScope, as_declaration, declared_filters
from stagegate.core.errors import ConfigurationError


@dataclass(frozen=True, eq=False, slots=True)
class TargetDescriptor:
    name: str
    func: Callable[..., Any]
    arguments: Mapping[str, Any] = field(default_factory=dict)
    class_filters: tuple[FilterDeclaration, ...] = ()
    method_filters: tuple[FilterDeclaration, ...] = ()

    def __post_init__(self) -> None:
        if not callable(self.func):
            raise ConfigurationError(f"target {self.name!r} is not callable")
        object.__setattr__(
            self,
            "class_filters",
            tuple(as_declaration(item, FilterScope.CLASS) for item in self.class_filters),
        )
        object.__setattr__(
            self,
            "method_filters",
            tuple(as_declaration(item, FilterScope.METHOD) for item in self.method_filters),
        )

    @classmethod
    def from_callable(
        cls,
        func: Callable[..., Any],
        *,
        owner: type | None = None,
        name: str | None = None,
        arguments: Mapping[str, Any] | None = None,
    ) -> TargetDescriptor:
        """Build a descriptor from ``use_filter`` metadata on ``func`` and ``owner``."""

        if owner is None:
            bound_self = getattr(func, "__self__", None)
            if bound_self is not None:
                owner = bound_self if isinstance(bound_self, type) else type(bound_self)
        qualified = name or getattr(func, "__qualname__", None) or repr(func)
        return cls(
            name=qualified,
            func=func,
            arguments=dict(arguments or {}),
            class_filters=declared_filters(owner),
            method_filters=declared_filters(func),
        )
