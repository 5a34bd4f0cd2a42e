# src/lasvpe/plugins/stages/saving.py
"""Sinks persisting analysis results to the bulk store.

Each saver writes the serialized payload under the layout in
lasvpe.core.layout and produces nothing. Writes replace the file in one
step, so a retried save leaves exactly one copy.
"""

from typing import ClassVar

from pydantic import JsonValue

from lasvpe.contracts.errors import FatalStageError
from lasvpe.contracts.payloads import (
    AttributesPayload,
    FeaturePayload,
    IDRankPayload,
    Payload,
    TrackletIdentifier,
    TrackletPayload,
    payload_to_bytes,
)
from lasvpe.contracts.plan import Port
from lasvpe.core.layout import attributes_path, feature_path, idrank_path, tracklet_path
from lasvpe.core.planner import Ports
from lasvpe.plugins.base import BaseStage


class _Saver(BaseStage):
    """Stores one payload per call; subclasses pick the path."""

    def _save(self, path: str, payload: Payload) -> None:
        self.context.store.put(path, payload_to_bytes(payload))

    def _require_id(self, tracklet_id: TrackletIdentifier | None) -> TrackletIdentifier:
        if tracklet_id is None:
            raise FatalStageError(f"Stage {self.name!r} cannot save a result without a tracklet identifier")
        return tracklet_id


class TrackletSaver(_Saver):
    name = "tracklet-saving"
    ports: ClassVar[tuple[Port, ...]] = (Ports.TRACKLET_SAVING,)

    def process(self, exec_param: JsonValue, payload: Payload) -> None:
        tracklet = self.expect(payload, TrackletPayload)
        self._save(tracklet_path(tracklet.id), tracklet)


class AttrSaver(_Saver):
    name = "attr-saving"
    ports: ClassVar[tuple[Port, ...]] = (Ports.ATTR_SAVING,)

    def process(self, exec_param: JsonValue, payload: Payload) -> None:
        attributes = self.expect(payload, AttributesPayload)
        self._save(attributes_path(self._require_id(attributes.tracklet_id)), attributes)


class FeatureSaver(_Saver):
    name = "reid-feature-saving"
    ports: ClassVar[tuple[Port, ...]] = (Ports.REID_FEATURE_SAVING,)

    def process(self, exec_param: JsonValue, payload: Payload) -> None:
        feature = self.expect(payload, FeaturePayload)
        self._save(feature_path(self._require_id(feature.tracklet_id)), feature)


class IDRankSaver(_Saver):
    name = "idrank-saving"
    ports: ClassVar[tuple[Port, ...]] = (Ports.IDRANK_SAVING,)

    def process(self, exec_param: JsonValue, payload: Payload) -> None:
        rank = self.expect(payload, IDRankPayload)
        self._save(idrank_path(self._require_id(rank.tracklet_id)), rank)
