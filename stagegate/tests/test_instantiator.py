import pytest

from stagegate.core.declarations import factory_filter, instance_filter, type_filter
from stagegate.core.dependencies import ServiceContainer
from stagegate.core.errors import ConfigurationError, DependencyResolutionError
from stagegate.core.instantiator import FilterInstantiator
from stagegate.filters.base import (
    ActionFilter,
    AlwaysRunResultFilter,
    AsyncActionFilter,
    FilterFactory,
    Stage,
    Variant,
)


class Greeting:
    def __init__(self):
        self.text = "hi"


class GreetingFilter(ActionFilter):
    def __init__(self, greeting: Greeting, punctuation: str = "!"):
        self.greeting = greeting
        self.punctuation = punctuation


class HybridFilter(ActionFilter, AsyncActionFilter):
    pass


class StampFilter(AlwaysRunResultFilter):
    pass


class NotAFilter:
    pass


class StampFactory(FilterFactory):
    is_reusable = True

    def __init__(self):
        self.calls = 0

    def create_instance(self, provider, **arguments):
        self.calls += 1
        return StampFilter()


def _scope():
    container = ServiceContainer()
    container.register_type(Greeting)
    return container.create_scope()


@pytest.mark.asyncio
async def test_type_declaration_resolves_constructor_dependencies():
    entry = await FilterInstantiator().instantiate(type_filter(GreetingFilter, punctuation="?"), _scope())

    assert isinstance(entry.instance.greeting, Greeting)
    assert entry.instance.punctuation == "?"
    assert entry.capabilities.variant(Stage.ACTION) is Variant.SYNC


@pytest.mark.asyncio
async def test_type_declaration_with_missing_dependency_fails():
    with pytest.raises(DependencyResolutionError) as excinfo:
        await FilterInstantiator().instantiate(type_filter(GreetingFilter), ServiceContainer().create_scope())
    assert "GreetingFilter" in str(excinfo.value)


@pytest.mark.asyncio
async def test_factory_callable_receives_provider_and_arguments():
    seen = {}

    def make(provider, label):
        seen["provider"] = provider
        seen["label"] = label
        return StampFilter()

    scope = _scope()
    entry = await FilterInstantiator().instantiate(factory_filter(make, label="x"), scope)

    assert seen == {"provider": scope, "label": "x"}
    assert Stage.ALWAYS_RUN_RESULT in entry.capabilities
    assert Stage.RESULT in entry.capabilities


@pytest.mark.asyncio
async def test_reusable_factory_instance_is_cached_per_declaration():
    factory = StampFactory()
    declaration = factory_filter(factory)
    instantiator = FilterInstantiator()

    first = await instantiator.instantiate(declaration, _scope())
    second = await instantiator.instantiate(declaration, _scope())
    other = await instantiator.instantiate(factory_filter(factory), _scope())

    assert first.instance is second.instance
    assert other.instance is not first.instance
    assert factory.calls == 2


@pytest.mark.asyncio
async def test_non_reusable_types_are_created_per_request():
    declaration = type_filter(GreetingFilter)
    instantiator = FilterInstantiator()

    first = await instantiator.instantiate(declaration, _scope())
    second = await instantiator.instantiate(declaration, _scope())

    assert first.instance is not second.instance
    assert instantiator.cached_count == 0


@pytest.mark.asyncio
async def test_reusable_cache_is_bounded():
    instantiator = FilterInstantiator(max_cached=2)
    for _ in range(5):
        await instantiator.instantiate(type_filter(StampFilter, reusable=True), _scope())

    assert instantiator.cached_count == 2


@pytest.mark.asyncio
async def test_literal_instance_is_returned_as_is():
    instance = StampFilter()

    entry = await FilterInstantiator().instantiate(instance_filter(instance), _scope())

    assert entry.instance is instance


@pytest.mark.asyncio
async def test_async_contract_preferred_over_sync():
    entry = await FilterInstantiator().instantiate(type_filter(HybridFilter), _scope())

    assert entry.capabilities.variant(Stage.ACTION) is Variant.ASYNC


@pytest.mark.asyncio
async def test_object_without_stage_contract_is_rejected():
    with pytest.raises(ConfigurationError):
        await FilterInstantiator().instantiate(instance_filter(NotAFilter()), _scope())


@pytest.mark.asyncio
async def test_factory_failure_surfaces_as_dependency_error():
    def broken(provider):
        raise RuntimeError("no config")

    with pytest.raises(DependencyResolutionError):
        await FilterInstantiator().instantiate(factory_filter(broken), _scope())


class LabelledFactory(FilterFactory):
    async def create_instance(self, provider, label="plain"):
        greeting = await provider.resolve(Greeting)
        instance = StampFilter()
        instance.label = f"{greeting.text}:{label}"
        return instance


class ExplodingFilter(ActionFilter):
    def __init__(self, greeting: Greeting):
        raise ValueError("bad greeting")


@pytest.mark.asyncio
async def test_filter_factory_receives_declaration_arguments():
    entry = await FilterInstantiator().instantiate(factory_filter(LabelledFactory(), label="x"), _scope())

    assert entry.instance.label == "hi:x"


@pytest.mark.asyncio
async def test_filter_constructor_failure_is_dependency_error():
    with pytest.raises(DependencyResolutionError) as excinfo:
        await FilterInstantiator().instantiate(type_filter(ExplodingFilter), _scope())
    assert "ExplodingFilter" in str(excinfo.value)
    assert excinfo.value.key is ExplodingFilter
