"""Execution order for filter declarations.

Lower sorts outer: its pre-phase runs earlier and its post-phase later. The
key is, in precedence order:

1. the explicit ``order`` (undeclared order counts as
   ``settings.default_filter_order``);
2. the scope the filter was found at, GLOBAL outermost, then CLASS, then
   METHOD (a bare declaration counts at the scope it was created with);
3. the registration sequence.

Because the explicit order is compared first, a METHOD filter can be pulled
outside every GLOBAL filter just by giving it a low enough order.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TypeVar

from stagegate.config.settings import settings
from stagegate.core.declarations import FilterDeclaration, FilterPlacement


Item = TypeVar("Item", FilterDeclaration, FilterPlacement)


class OrderingResolver:
    def __init__(self, default_order: int | None = None) -> None:
        self.default_order = settings.default_filter_order if default_order is None else default_order

    def sort_key(self, item: FilterDeclaration | FilterPlacement) -> tuple[int, int, int]:
        if isinstance(item, FilterPlacement):
            declaration, scope = item.declaration, item.scope
        else:
            declaration, scope = item, item.scope
        explicit = declaration.order if declaration.order is not None else self.default_order
        return (explicit, int(scope), declaration.sequence)

    def order(self, items: Iterable[Item]) -> list[Item]:
        return sorted(items, key=self.sort_key)
