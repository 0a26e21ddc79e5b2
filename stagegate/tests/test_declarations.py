import pytest

from stagegate.core.declarations import (
    DeclarationKind,
    FilterDeclaration,
    FilterScope,
    declared_filters,
    factory_filter,
    use_filter,
)
from stagegate.core.errors import ConfigurationError
from stagegate.core.target import TargetDescriptor
from stagegate.filters.base import ActionFilter, ResultFilter


class Audit(ActionFilter):
    order = 3


class Stamp(ResultFilter):
    pass


@use_filter(Audit)
class BaseHandlers:
    pass


@use_filter(Stamp, order=-5)
class Handlers(BaseHandlers):
    @use_filter(Audit, order=1)
    @use_filter(Stamp)
    def get(self, item_id):
        return item_id


def test_use_filter_on_class_is_class_scope():
    declarations = declared_filters(Handlers)

    assert [item.target for item in declarations] == [Audit, Stamp]
    assert {item.scope for item in declarations} == {FilterScope.CLASS}
    assert declarations[0].order == 3
    assert declarations[1].order == -5


def test_use_filter_on_function_keeps_source_order():
    declarations = declared_filters(Handlers.get)

    assert [item.target for item in declarations] == [Audit, Stamp]
    assert [item.scope for item in declarations] == [FilterScope.METHOD, FilterScope.METHOD]
    assert declarations[0].order == 1


def test_target_from_bound_method_reads_owner_and_method_metadata():
    handlers = Handlers()

    target = TargetDescriptor.from_callable(handlers.get)

    assert target.name == "Handlers.get"
    assert [item.target for item in target.class_filters] == [Audit, Stamp]
    assert [item.target for item in target.method_filters] == [Audit, Stamp]


def test_subclass_metadata_does_not_leak_into_base():
    assert [item.target for item in declared_filters(BaseHandlers)] == [Audit]


def test_declarations_hash_by_identity():
    first = factory_filter(lambda provider: Audit())
    second = factory_filter(lambda provider: Audit())

    assert first != second
    assert len({first, second, first}) == 2


def test_use_filter_attaches_existing_declaration_unchanged():
    declaration = factory_filter(lambda provider: Audit(), order=4)

    @use_filter(declaration)
    def handler():
        return None

    assert declared_filters(handler) == (declaration,)
    assert declaration.scope is FilterScope.GLOBAL


def test_arguments_are_read_only():
    declaration = factory_filter(lambda provider, **kw: Audit(), limit=3)

    with pytest.raises(TypeError):
        declaration.arguments["limit"] = 4


@pytest.mark.parametrize(
    "kind,target",
    [
        (DeclarationKind.TYPE, Audit()),
        (DeclarationKind.FACTORY, 42),
        (DeclarationKind.INSTANCE, None),
    ],
)
def test_invalid_declarations_raise_configuration_error(kind, target):
    with pytest.raises(ConfigurationError):
        FilterDeclaration(kind=kind, target=target)


def test_non_integer_order_is_rejected():
    with pytest.raises(ConfigurationError):
        FilterDeclaration(kind=DeclarationKind.TYPE, target=Audit, order="1")


def test_non_callable_target_is_rejected():
    with pytest.raises(ConfigurationError):
        TargetDescriptor(name="broken", func="not callable")
