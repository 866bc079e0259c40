# src/rebatch/plugins/manager.py
"""Plugin manager for discovery, registration, and lookup.

Uses pluggy for hook-based plugin registration.
"""

from dataclasses import dataclass
from typing import Any

import pluggy

from rebatch.plugins.hookspecs import (
    PROJECT_NAME,
    RebatchSinkSpec,
    RebatchSourceSpec,
    RebatchTransformSpec,
    hookimpl,
)

PLUGIN_KINDS = ("source", "transform", "sink")


@dataclass(frozen=True)
class PluginSpec:
    """Registration record for a plugin, used for listing."""

    name: str
    kind: str
    version: str
    description: str

    @classmethod
    def from_plugin(cls, plugin_cls: type[Any], kind: str) -> "PluginSpec":
        doc = (plugin_cls.__doc__ or "").strip()
        return cls(
            name=plugin_cls.name,
            kind=kind,
            version=plugin_cls.plugin_version,
            description=doc.splitlines()[0] if doc else "",
        )


class BuiltinPlugins:
    """Hook implementations for the plugins shipped with rebatch."""

    @hookimpl
    def rebatch_get_sources(self) -> list[type[Any]]:
        from rebatch.plugins.sources.delimited import DelimitedFileSource

        return [DelimitedFileSource]

    @hookimpl
    def rebatch_get_transforms(self) -> list[type[Any]]:
        from rebatch.plugins.transforms.person import PersonTransform

        return [PersonTransform]

    @hookimpl
    def rebatch_get_sinks(self) -> list[type[Any]]:
        from rebatch.plugins.sinks.database_sink import DatabaseRecordSink

        return [DatabaseRecordSink]


class PluginManager:
    """Manages plugin discovery, registration, and lookup.

    Usage:
        manager = PluginManager()
        manager.register_builtin_plugins()

        sink_cls = manager.get_sink_by_name("database")
    """

    def __init__(self) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)

        self._pm.add_hookspecs(RebatchSourceSpec)
        self._pm.add_hookspecs(RebatchTransformSpec)
        self._pm.add_hookspecs(RebatchSinkSpec)

        # Caches - map name to plugin class for duplicate detection
        self._sources: dict[str, type[Any]] = {}
        self._transforms: dict[str, type[Any]] = {}
        self._sinks: dict[str, type[Any]] = {}

    def register_builtin_plugins(self) -> None:
        """Register the built-in source, transform, and sink plugins."""
        self.register(BuiltinPlugins())

    def register(self, plugin: Any) -> None:
        """Register a plugin.

        Args:
            plugin: Plugin instance implementing hook methods
        """
        self._pm.register(plugin)
        self._refresh_caches()

    def _refresh_caches(self) -> None:
        """Refresh plugin caches from hooks.

        Raises:
            ValueError: If a plugin with the same name and kind is already registered
        """
        self._sources = self._collect("source", self._pm.hook.rebatch_get_sources())
        self._transforms = self._collect("transform", self._pm.hook.rebatch_get_transforms())
        self._sinks = self._collect("sink", self._pm.hook.rebatch_get_sinks())

    @staticmethod
    def _collect(kind: str, results: list[list[type[Any]]]) -> dict[str, type[Any]]:
        collected: dict[str, type[Any]] = {}
        for classes in results:
            for cls in classes:
                name = cls.name
                if name in collected:
                    raise ValueError(f"Duplicate {kind} plugin name: '{name}'. Already registered by {collected[name].__name__}")
                collected[name] = cls
        return collected

    # === Getters ===

    def get_sources(self) -> list[type[Any]]:
        return list(self._sources.values())

    def get_transforms(self) -> list[type[Any]]:
        return list(self._transforms.values())

    def get_sinks(self) -> list[type[Any]]:
        return list(self._sinks.values())

    def list_specs(self) -> list[PluginSpec]:
        """All registered plugins, grouped by kind and sorted by name."""
        specs: list[PluginSpec] = []
        for kind, registry in zip(PLUGIN_KINDS, (self._sources, self._transforms, self._sinks), strict=True):
            specs.extend(PluginSpec.from_plugin(registry[name], kind) for name in sorted(registry))
        return specs

    # === Lookup by name ===

    def get_source_by_name(self, name: str) -> type[Any] | None:
        return self._sources.get(name)

    def get_transform_by_name(self, name: str) -> type[Any] | None:
        return self._transforms.get(name)

    def get_sink_by_name(self, name: str) -> type[Any] | None:
        return self._sinks.get(name)
