"""Stage plugin system: hookspecs, base class, manager and builtin stages."""

from lasvpe.plugins.base import BaseStage
from lasvpe.plugins.context import StageContext
from lasvpe.plugins.hookspecs import hookimpl
from lasvpe.plugins.manager import StageManager

__all__ = ["BaseStage", "StageContext", "StageManager", "hookimpl"]
