# src/rebatch/plugins/hookspecs.py
"""pluggy hook specifications for rebatch plugins.

Plugins implement these hooks to register themselves with the engine.
The plugin manager calls these hooks during discovery.

Usage (implementing a plugin):
    from rebatch.plugins.hookspecs import hookimpl

    class MyPlugin:
        @hookimpl  # NOT @hookspec - that's for defining specs
        def rebatch_get_transforms(self):
            return [MyTransform]

Note: @hookspec defines the hook interface (done here).
      @hookimpl marks plugin implementations of those hooks.
"""

from typing import Any

import pluggy

# Project name for pluggy
PROJECT_NAME = "rebatch"

# Hook specification marker
hookspec = pluggy.HookspecMarker(PROJECT_NAME)

# Hook implementation marker (for plugins to use)
hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class RebatchSourceSpec:
    """Hook specifications for record source plugins."""

    @hookspec
    def rebatch_get_sources(self) -> list[type[Any]]:  # type: ignore[empty-body]
        """Return RecordSource plugin classes (not instances)."""


class RebatchTransformSpec:
    """Hook specifications for record transform plugins."""

    @hookspec
    def rebatch_get_transforms(self) -> list[type[Any]]:  # type: ignore[empty-body]
        """Return RecordTransform plugin classes."""


class RebatchSinkSpec:
    """Hook specifications for record sink plugins."""

    @hookspec
    def rebatch_get_sinks(self) -> list[type[Any]]:  # type: ignore[empty-body]
        """Return RecordSink plugin classes."""
