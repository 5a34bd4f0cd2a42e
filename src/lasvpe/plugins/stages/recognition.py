# src/lasvpe/plugins/stages/recognition.py
"""Deterministic stand-ins for attribute recognition and re-identification.

Outputs are pure functions of the tracklet identifier, so repeated runs (and
retries) produce identical results.
"""

import zlib
from typing import ClassVar

from pydantic import JsonValue

from lasvpe.contracts.errors import BlobNotFoundError, FatalStageError
from lasvpe.contracts.payloads import (
    AttributesPayload,
    FeaturePayload,
    IDRankPayload,
    Payload,
    TrackletAttrPayload,
    TrackletIdentifier,
    TrackletPayload,
    UrlPayload,
    payload_from_bytes,
)
from lasvpe.contracts.plan import Port
from lasvpe.core.layout import ATTRIBUTES_DIR
from lasvpe.core.planner import Ports
from lasvpe.plugins.base import BaseStage

ATTRIBUTE_NAMES: tuple[str, ...] = (
    "gender_male",
    "age_adult",
    "backpack",
    "hat",
    "upper_red",
    "lower_black",
)

FEATURE_DIM = 16
DEFAULT_TOP_K = 10


def _unit(seed: str) -> float:
    """Stable pseudo-random value in [0, 1)."""
    return zlib.crc32(seed.encode("utf-8")) / 2**32


class FakeAttrRecognizer(BaseStage):
    """Recognizes attributes of a tracklet given inline or by stored URL."""

    name = "pedestrian-attr-recog"
    ports: ClassVar[tuple[Port, ...]] = (Ports.ATTR_RECOG_TRACKLET, Ports.ATTR_RECOG_TRACKLET_URL)

    def process(self, exec_param: JsonValue, payload: Payload) -> AttributesPayload:
        tracklet = self._tracklet(self.expect(payload, TrackletPayload, UrlPayload))
        return AttributesPayload(
            tracklet_id=tracklet.id,
            values={attr: round(_unit(f"{tracklet.id}:{attr}"), 6) for attr in ATTRIBUTE_NAMES},
        )

    def _tracklet(self, payload: TrackletPayload | UrlPayload) -> TrackletPayload:
        if isinstance(payload, TrackletPayload):
            return payload
        try:
            stored = payload_from_bytes(self.context.store.get(payload.url))
        except BlobNotFoundError as e:
            raise FatalStageError(f"No stored tracklet at {payload.url!r}") from e
        if not isinstance(stored, TrackletPayload):
            raise FatalStageError(f"{payload.url!r} holds a {stored.kind} payload, not a tracklet")
        return stored


class FakeReIDFeatureExtractor(BaseStage):
    """Extracts a fixed-length feature vector from a tracklet."""

    name = "pedestrian-reid-feature-extraction"
    ports: ClassVar[tuple[Port, ...]] = (Ports.REID_FEATURE_TRACKLET,)

    def process(self, exec_param: JsonValue, payload: Payload) -> FeaturePayload:
        tracklet = self.expect(payload, TrackletPayload)
        return FeaturePayload(
            tracklet_id=tracklet.id,
            vector=tuple(round(_unit(f"{tracklet.id}#{i}"), 6) for i in range(FEATURE_DIM)),
        )


class FakeReIDRanker(BaseStage):
    """Ranks stored tracklets by attribute similarity to the query.

    The gallery is every attribute vector saved in the bulk store. The exec
    param, if given, is the number of identities returned.
    """

    name = "pedestrian-reid"
    ports: ClassVar[tuple[Port, ...]] = (Ports.REID_ATTR, Ports.REID_TRACKLET_ATTR)

    def process(self, exec_param: JsonValue, payload: Payload) -> IDRankPayload:
        query = self.expect(payload, AttributesPayload, TrackletAttrPayload)
        if isinstance(query, TrackletAttrPayload):
            attributes = query.attributes
            query_id = attributes.tracklet_id or (query.tracklet.id if query.tracklet else None)
        else:
            attributes = query
            query_id = attributes.tracklet_id
        if query_id is None:
            raise FatalStageError("Cannot rank a query without a tracklet identifier")

        top_k = DEFAULT_TOP_K if exec_param is None else exec_param
        if not isinstance(top_k, int) or isinstance(top_k, bool) or top_k <= 0:
            raise FatalStageError(f"ReID exec param must be a positive integer, got {exec_param!r}")

        gallery = [(str(tid), values) for tid, values in self._gallery() if tid != query_id]
        gallery.sort(key=lambda entry: (self._distance(attributes.values, entry[1]), entry[0]))
        return IDRankPayload(tracklet_id=query_id, ranked_ids=tuple(tid for tid, _ in gallery[:top_k]))

    def _gallery(self) -> list[tuple[TrackletIdentifier, dict[str, float]]]:
        store = self.context.store
        gallery: list[tuple[TrackletIdentifier, dict[str, float]]] = []
        for path in store.list(f"{ATTRIBUTES_DIR}/"):
            stored = payload_from_bytes(store.get(path))
            if isinstance(stored, AttributesPayload) and stored.tracklet_id is not None:
                gallery.append((stored.tracklet_id, stored.values))
        return gallery

    @staticmethod
    def _distance(a: dict[str, float], b: dict[str, float]) -> float:
        return sum(abs(a.get(key, 0.0) - b.get(key, 0.0)) for key in sorted(a.keys() | b.keys()))
