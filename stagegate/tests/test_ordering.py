from stagegate.core.declarations import FilterPlacement, FilterScope, instance_filter
from stagegate.core.ordering import OrderingResolver
from stagegate.filters.base import ActionFilter


class Noop(ActionFilter):
    pass


def _names(declarations):
    return [item.target.label for item in declarations]


def _decl(label, scope, order=None):
    instance = Noop()
    instance.label = label
    return instance_filter(instance, order=order, scope=scope)


def test_scope_rank_orders_global_class_method():
    method = _decl("method", FilterScope.METHOD)
    klass = _decl("class", FilterScope.CLASS)
    glob = _decl("global", FilterScope.GLOBAL)

    assert _names(OrderingResolver(default_order=0).order([method, klass, glob])) == ["global", "class", "method"]


def test_explicit_order_beats_scope():
    glob = _decl("global", FilterScope.GLOBAL)
    method = _decl("method", FilterScope.METHOD, order=-(2**31))

    assert _names(OrderingResolver(default_order=0).order([glob, method])) == ["method", "global"]


def test_positive_order_nests_inside_default_filters():
    late = _decl("late", FilterScope.GLOBAL, order=100)
    method = _decl("method", FilterScope.METHOD)

    assert _names(OrderingResolver(default_order=0).order([late, method])) == ["method", "late"]


def test_registration_sequence_breaks_ties():
    first = _decl("first", FilterScope.CLASS, order=3)
    second = _decl("second", FilterScope.CLASS, order=3)
    third = _decl("third", FilterScope.CLASS, order=3)

    assert _names(OrderingResolver().order([third, first, second])) == ["first", "second", "third"]


def test_default_order_is_configurable():
    unordered = _decl("unordered", FilterScope.GLOBAL)
    ordered = _decl("ordered", FilterScope.METHOD, order=5)

    assert _names(OrderingResolver(default_order=0).order([unordered, ordered])) == ["unordered", "ordered"]
    assert _names(OrderingResolver(default_order=10).order([unordered, ordered])) == ["ordered", "unordered"]


def test_placement_scope_overrides_declared_scope():
    shared = _decl("shared", FilterScope.METHOD)
    klass = _decl("class", FilterScope.CLASS)

    ordered = OrderingResolver(default_order=0).order(
        [FilterPlacement(klass, FilterScope.CLASS), FilterPlacement(shared, FilterScope.GLOBAL)]
    )

    assert [item.declaration.target.label for item in ordered] == ["shared", "class"]
