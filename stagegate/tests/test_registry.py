import pytest

from stagegate.core.declarations import DeclarationKind, FilterScope, instance_filter, type_filter, use_filter
from stagegate.core.errors import ConfigurationError
from stagegate.core.registry import FilterRegistry
from stagegate.core.target import TargetDescriptor
from stagegate.filters.base import ActionFilter


class AuditFilter(ActionFilter):
    pass


def _handler():
    return "ok"


def test_resolve_collects_global_class_and_method_filters():
    registry = FilterRegistry()
    glob = registry.register_global(type_filter(AuditFilter))
    klass = instance_filter(AuditFilter(), scope=FilterScope.CLASS)
    method = instance_filter(AuditFilter(), scope=FilterScope.METHOD)
    target = TargetDescriptor(name="t", func=_handler, class_filters=(klass,), method_filters=(method,))

    resolved = registry.resolve(target)

    assert [item.declaration for item in resolved] == [glob, klass, method]
    assert [item.scope for item in resolved] == [FilterScope.GLOBAL, FilterScope.CLASS, FilterScope.METHOD]


def test_resolve_deduplicates_by_identity_only():
    registry = FilterRegistry()
    shared = instance_filter(AuditFilter(), scope=FilterScope.METHOD)
    twin_a = type_filter(AuditFilter, scope=FilterScope.METHOD, order=1)
    twin_b = type_filter(AuditFilter, scope=FilterScope.METHOD, order=1)
    target = TargetDescriptor(name="t", func=_handler, method_filters=(shared, shared, twin_a, twin_b))

    resolved = registry.resolve(target)

    assert [item.declaration for item in resolved] == [shared, twin_a, twin_b]


def test_register_global_wraps_classes_and_instances():
    registry = FilterRegistry()
    from_class = registry.register_global(AuditFilter)
    from_instance = registry.register_global(AuditFilter())

    assert from_class.kind is DeclarationKind.TYPE
    assert from_instance.kind is DeclarationKind.INSTANCE
    assert {item.scope for item in registry.global_filters} == {FilterScope.GLOBAL}


def test_register_global_keeps_the_declaration_object():
    registry = FilterRegistry()
    method = type_filter(AuditFilter, scope=FilterScope.METHOD, order=7)

    registered = registry.register_global(method)
    placement = registry.resolve(TargetDescriptor(name="t", func=_handler))[0]

    assert registered is method
    assert placement.declaration is method
    assert placement.scope is FilterScope.GLOBAL


def test_declaration_shared_across_scopes_resolves_once_at_outermost_scope():
    registry = FilterRegistry()
    shared = instance_filter(AuditFilter())
    registry.register_global(shared)

    @use_filter(shared)
    def handler():
        return "ok"

    target = TargetDescriptor.from_callable(handler)
    resolved = registry.resolve(target)

    assert target.method_filters == (shared,)
    assert [(item.declaration, item.scope) for item in resolved] == [(shared, FilterScope.GLOBAL)]


def test_frozen_registry_rejects_registration():
    registry = FilterRegistry()
    registry.register_globals([AuditFilter])
    registry.freeze()

    with pytest.raises(ConfigurationError):
        registry.register_global(AuditFilter)
    assert len(registry.global_filters) == 1


def test_register_none_is_configuration_error():
    with pytest.raises(ConfigurationError):
        FilterRegistry().register_global(None)
