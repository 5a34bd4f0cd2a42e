# src/lasvpe/plugins/manager.py
"""Stage manager for discovery, registration and instantiation.

Uses pluggy for hook-based stage registration.
"""

from collections.abc import Iterable
from typing import Any

import pluggy

from lasvpe.plugins.base import BaseStage
from lasvpe.plugins.context import StageContext
from lasvpe.plugins.hookspecs import PROJECT_NAME, LasVpeStageSpec


class StageManager:
    """Manages stage plugin registration and lookup.

    Usage:
        manager = StageManager()
        manager.register_builtin_plugins()

        tracker_cls = manager.get_stage_by_name("pedestrian-tracking")
        stages = manager.create_all(["pedestrian-tracking", "tracklet-saving"], context)
    """

    def __init__(self) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)
        self._pm.add_hookspecs(LasVpeStageSpec)

        # Cache - map name to stage class for duplicate detection
        self._stages: dict[str, type[BaseStage]] = {}

    def register_builtin_plugins(self) -> None:
        """Register the stages shipped with lasvpe. Idempotent."""
        from lasvpe.plugins.stages import BuiltinStagesPlugin

        if not any(isinstance(plugin, BuiltinStagesPlugin) for plugin in self._pm.get_plugins()):
            self.register(BuiltinStagesPlugin())

    def register(self, plugin: Any) -> None:
        """Register a plugin.

        Raises:
            ValueError: If a stage name is already registered by another class
            TypeError: If a plugin returns something that is not a BaseStage subclass
        """
        self._pm.register(plugin)
        try:
            self._refresh_cache()
        except (TypeError, ValueError):
            self._pm.unregister(plugin)
            raise

    def _refresh_cache(self) -> None:
        new_stages: dict[str, type[BaseStage]] = {}
        for stages in self._pm.hook.lasvpe_get_stages():
            for cls in stages:
                if not (isinstance(cls, type) and issubclass(cls, BaseStage)):
                    raise TypeError(f"Stage plugins must return BaseStage subclasses, got {cls!r}")
                name = cls.name
                if name in new_stages and new_stages[name] is not cls:
                    raise ValueError(f"Duplicate stage name: '{name}'. Already registered by {new_stages[name].__name__}")
                new_stages[name] = cls
        self._stages = new_stages

    def get_stages(self) -> list[type[BaseStage]]:
        """Get all registered stages."""
        return list(self._stages.values())

    def get_stage_by_name(self, name: str) -> type[BaseStage] | None:
        """Get stage class by name."""
        return self._stages.get(name)

    def create(self, name: str, context: StageContext) -> BaseStage:
        """Instantiate the stage registered as ``name``.

        Raises:
            KeyError: If no stage has that name
        """
        cls = self.get_stage_by_name(name)
        if cls is None:
            raise KeyError(f"Unknown stage {name!r}. Registered: {sorted(self._stages)}")
        return cls(context)

    def create_all(self, names: Iterable[str], context: StageContext) -> list[BaseStage]:
        """Instantiate every named stage (e.g. WorkerSettings.stages)."""
        return [self.create(name, context) for name in names]
