"""Global filter declarations loaded from YAML, with an mtime-based cache."""

from __future__ import annotations

import importlib
from pathlib import Path
from threading import Lock
from typing import Any

import yaml

from stagegate.config.settings import settings
from stagegate.core.declarations import (
    DeclarationKind,
    FilterDeclaration,
    FilterScope,
    factory_filter,
    instance_filter,
    type_filter,
)
from stagegate.core.errors import ConfigurationError
from stagegate.core.registry import FilterRegistry
from stagegate.util.logger import logger


_CACHE_LOCK = Lock()
_CACHE: dict[str, tuple[int, list[dict[str, Any]]]] = {}


def import_object(path: str) -> Any:
    """Import ``package.module:attr`` (or ``package.module.attr``)."""

    module_name, sep, attr = path.partition(":")
    if not sep:
        module_name, _, attr = path.rpartition(".")
    if not module_name or not attr:
        raise ConfigurationError(f"invalid import path: {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"cannot import {module_name!r} for filter {path!r}: {exc}") from exc
    target: Any = module
    for part in attr.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as exc:
            raise ConfigurationError(f"{path!r} has no attribute {part!r}") from exc
    return target


def _load_entries(path: Path) -> list[dict[str, Any]]:
    cache_key = str(path.resolve())
    mtime_ns = path.stat().st_mtime_ns
    with _CACHE_LOCK:
        cached = _CACHE.get(cache_key)
        if cached and cached[0] == mtime_ns:
            return cached[1]

        try:
            loaded = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"invalid filter config yaml: {path}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"invalid filter config format: {path}")
        entries = loaded.get("global_filters") or []
        if not isinstance(entries, list) or not all(isinstance(item, dict) for item in entries):
            raise ConfigurationError(f"global_filters must be a list of mappings: {path}")
        _CACHE[cache_key] = (mtime_ns, entries)
        return entries


def _declaration_from_entry(entry: dict[str, Any]) -> FilterDeclaration:
    raw_path = entry.get("filter")
    if not raw_path or not isinstance(raw_path, str):
        raise ConfigurationError(f"filter entry without 'filter' path: {entry!r}")
    try:
        kind = DeclarationKind(str(entry.get("kind", "type")).strip().lower())
    except ValueError as exc:
        raise ConfigurationError(f"unknown filter kind in entry {entry!r}") from exc
    order = entry.get("order")
    if order is not None and not isinstance(order, int):
        raise ConfigurationError(f"filter order must be an integer: {entry!r}")
    arguments = entry.get("arguments") or {}
    if not isinstance(arguments, dict):
        raise ConfigurationError(f"filter arguments must be a mapping: {entry!r}")
    reusable = bool(entry.get("reusable", False))

    target = import_object(raw_path)
    if kind is DeclarationKind.TYPE:
        return type_filter(target, order=order, scope=FilterScope.GLOBAL, reusable=reusable, **arguments)
    if kind is DeclarationKind.FACTORY:
        return factory_filter(target, order=order, scope=FilterScope.GLOBAL, reusable=reusable, **arguments)
    instance = target(**arguments) if callable(target) and isinstance(target, type) else target
    return instance_filter(instance, order=order, scope=FilterScope.GLOBAL)


def load_global_filters(path: str | Path | None = None) -> list[FilterDeclaration]:
    config_path = Path(path or settings.filters_config_path)
    if not config_path.exists():
        logger.warning("filter config not found, no global filters loaded path=%s", config_path)
        return []
    declarations = [_declaration_from_entry(entry) for entry in _load_entries(config_path)]
    logger.info("filter config loaded path=%s filters=%s", config_path, [item.name for item in declarations])
    return declarations


def build_registry(path: str | Path | None = None, *, freeze: bool = True) -> FilterRegistry:
    registry = FilterRegistry()
    registry.register_globals(load_global_filters(path))
    if freeze:
        registry.freeze()
    return registry
