"""Filter registry."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from stagegate.core.declarations import FilterDeclaration, FilterPlacement, FilterScope, as_declaration
from stagegate.core.errors import ConfigurationError
from stagegate.core.target import TargetDescriptor
from stagegate.util.logger import logger


class FilterRegistry:
    def __init__(self) -> None:
        self._global_filters: list[FilterDeclaration] = []
        self._frozen = False

    def register_global(self, declaration: Any) -> FilterDeclaration:
        if self._frozen:
            raise ConfigurationError("filter registry is frozen; register filters during configuration")
        normalized = as_declaration(declaration, FilterScope.GLOBAL)
        self._global_filters.append(normalized)
        logger.info(
            "registered global filter name=%s kind=%s order=%s",
            normalized.name,
            normalized.kind.value,
            normalized.order,
        )
        return normalized

    def register_globals(self, declarations: Iterable[Any]) -> list[FilterDeclaration]:
        items = [self.register_global(item) for item in declarations]
        logger.info("registered %d global filters", len(items))
        return items

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def global_filters(self) -> tuple[FilterDeclaration, ...]:
        return tuple(self._global_filters)

    def resolve(self, target: TargetDescriptor) -> list[FilterPlacement]:
        """Global, class and method placements for ``target``.

        A declaration object appearing more than once is kept at its first,
        outermost, occurrence.
        """

        occurrences = (
            *((item, FilterScope.GLOBAL) for item in self._global_filters),
            *((item, FilterScope.CLASS) for item in target.class_filters),
            *((item, FilterScope.METHOD) for item in target.method_filters),
        )
        seen: set[int] = set()
        resolved: list[FilterPlacement] = []
        for declaration, scope in occurrences:
            if not isinstance(declaration, FilterDeclaration):
                raise ConfigurationError(f"invalid filter declaration on {target.name}: {declaration!r}")
            if id(declaration) in seen:
                continue
            seen.add(id(declaration))
            resolved.append(FilterPlacement(declaration, scope))
        return resolved
