# src/lasvpe/plugins/hookspecs.py
"""pluggy hook specifications for LaS-VPE stage plugins.

Usage (implementing a plugin):
    from lasvpe.plugins.hookspecs import hookimpl

    class MyPlugin:
        @hookimpl
        def lasvpe_get_stages(self):
            return [MyStage]
"""

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from lasvpe.plugins.base import BaseStage

# Project name for pluggy
PROJECT_NAME = "lasvpe"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)
hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class LasVpeStageSpec:
    """Hook specifications for stage plugins."""

    @hookspec
    def lasvpe_get_stages(self) -> list[type["BaseStage"]]:  # type: ignore[empty-body]
        """Return stage classes (not instances)."""
