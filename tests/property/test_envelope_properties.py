# tests/property/test_envelope_properties.py
"""Property-based tests for envelope and payload encoding."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from lasvpe.contracts import (
    AttributesPayload,
    BoundingBox,
    DataKind,
    ExecutionPlan,
    FeaturePayload,
    FrameArrayPayload,
    Payload,
    Port,
    SerializationError,
    TaskEnvelope,
    TrackletIdentifier,
    TrackletPayload,
    UrlPayload,
    payload_from_bytes,
    payload_to_bytes,
)

finite_floats = st.floats(allow_nan=False, allow_infinity=False)
int64 = st.integers(min_value=-(2**63), max_value=2**63 - 1)

tracklet_ids = st.builds(TrackletIdentifier, video_id=st.text(max_size=20), serial_number=int64)

boxes = st.builds(
    BoundingBox,
    x=int64,
    y=int64,
    width=st.integers(min_value=1, max_value=4096),
    height=st.integers(min_value=1, max_value=4096),
    patch_data=st.binary(max_size=64),
)

payloads: st.SearchStrategy[Payload] = st.one_of(
    st.builds(UrlPayload, url=st.text()),
    st.builds(
        TrackletPayload,
        id=tracklet_ids,
        start_frame_index=st.integers(min_value=0, max_value=2**63 - 1),
        location_sequence=st.lists(boxes, max_size=5).map(tuple),
    ),
    st.builds(
        AttributesPayload,
        tracklet_id=st.none() | tracklet_ids,
        values=st.dictionaries(st.text(max_size=10), finite_floats, max_size=5),
    ),
    st.builds(FeaturePayload, tracklet_id=tracklet_ids, vector=st.lists(finite_floats, max_size=16).map(tuple)),
    st.builds(
        FrameArrayPayload,
        width=st.integers(min_value=1, max_value=8),
        height=st.integers(min_value=1, max_value=8),
        frames=st.lists(st.binary(max_size=128), max_size=3).map(tuple),
    ),
)


def _plan() -> tuple[ExecutionPlan, Port]:
    plan = ExecutionPlan()
    port = Port(stage="sink", kind=DataKind.URL)
    plan.add_node(DataKind.NONE).create_input_port(port)
    return plan, port


class TestEnvelopeProperties:
    @given(payload=payloads, tag=st.none() | st.text(max_size=20), task_id=st.text(min_size=1, max_size=40))
    def test_round_trip(self, payload: Payload, tag: str | None, task_id: str) -> None:
        plan, port = _plan()
        envelope = TaskEnvelope.create(plan, [port], payload, tag=tag, task_id=task_id)

        restored = TaskEnvelope.deserialize(envelope.serialize())

        assert restored == envelope
        assert type(restored.payload) is type(payload)

    @given(payload=payloads)
    def test_payload_bytes_round_trip(self, payload: Payload) -> None:
        assert payload_from_bytes(payload_to_bytes(payload)) == payload

    @given(data=st.binary(max_size=256))
    def test_arbitrary_bytes_rejected_cleanly(self, data: bytes) -> None:
        with pytest.raises(SerializationError):
            TaskEnvelope.deserialize(data)
