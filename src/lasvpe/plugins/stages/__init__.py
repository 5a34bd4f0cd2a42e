# src/lasvpe/plugins/stages/__init__.py
"""Builtin stages: the planner plus deterministic stand-ins for the external algorithms."""

from lasvpe.plugins.base import BaseStage
from lasvpe.plugins.hookspecs import hookimpl
from lasvpe.plugins.stages.command import CommandStage
from lasvpe.plugins.stages.recognition import FakeAttrRecognizer, FakeReIDFeatureExtractor, FakeReIDRanker
from lasvpe.plugins.stages.saving import AttrSaver, FeatureSaver, IDRankSaver, TrackletSaver
from lasvpe.plugins.stages.tracking import FakePedestrianTracker

BUILTIN_STAGES: tuple[type[BaseStage], ...] = (
    CommandStage,
    FakePedestrianTracker,
    FakeAttrRecognizer,
    FakeReIDFeatureExtractor,
    FakeReIDRanker,
    TrackletSaver,
    AttrSaver,
    FeatureSaver,
    IDRankSaver,
)


class BuiltinStagesPlugin:
    """Registers the builtin stages with the stage manager."""

    @hookimpl
    def lasvpe_get_stages(self) -> list[type[BaseStage]]:
        return list(BUILTIN_STAGES)


__all__ = [
    "BUILTIN_STAGES",
    "AttrSaver",
    "BuiltinStagesPlugin",
    "CommandStage",
    "FakeAttrRecognizer",
    "FakePedestrianTracker",
    "FakeReIDFeatureExtractor",
    "FakeReIDRanker",
    "FeatureSaver",
    "IDRankSaver",
    "TrackletSaver",
]
