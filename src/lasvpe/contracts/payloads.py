# src/lasvpe/contracts/payloads.py
"""Payload variants carried by task envelopes.

The payload is a closed tagged union: every variant declares a literal
``kind`` discriminant, so deserializers recover the concrete type from the
wire bytes alone. Adding a stage output type means adding a variant here.

Binary fields (image patches, frames) travel as base64 strings in JSON.
"""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, JsonValue, TypeAdapter, ValidationError

from lasvpe.contracts.enums import DataKind
from lasvpe.contracts.errors import SerializationError

_PAYLOAD_CONFIG = ConfigDict(
    frozen=True,
    extra="forbid",
    ser_json_bytes="base64",
    val_json_bytes="base64",
)


class _PayloadBase(BaseModel):
    """Common configuration for all payload variants."""

    model_config = _PAYLOAD_CONFIG

    data_kind: ClassVar[DataKind | None] = None


# =============================================================================
# Tracking outputs
# =============================================================================


class BoundingBox(BaseModel):
    """Location of a pedestrian in one frame, with its image patch."""

    model_config = _PAYLOAD_CONFIG

    x: int
    y: int
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    patch_data: bytes = b""


class TrackletIdentifier(BaseModel):
    """Identifies a tracklet by source video and serial number."""

    model_config = _PAYLOAD_CONFIG

    video_id: str
    serial_number: int

    def __str__(self) -> str:
        return f"{self.video_id}_tarid{self.serial_number}"


class UrlPayload(_PayloadBase):
    """Textual reference to a video or stored object."""

    kind: Literal["url"] = "url"
    data_kind: ClassVar[DataKind | None] = DataKind.URL

    url: str


class TrackletPayload(_PayloadBase):
    """A pedestrian tracklet produced by a tracker."""

    kind: Literal["tracklet"] = "tracklet"
    data_kind: ClassVar[DataKind | None] = DataKind.TRACKLET

    id: TrackletIdentifier
    start_frame_index: int = 0
    num_tracklets: int = 1
    location_sequence: tuple[BoundingBox, ...] = ()

    def sample(self, max_samples: int) -> TrackletPayload:
        """Return a copy keeping at most ``max_samples`` evenly spaced boxes."""
        boxes = self.location_sequence
        if max_samples <= 0 or len(boxes) <= max_samples:
            return self
        step = len(boxes) / max_samples
        kept = tuple(boxes[int(i * step)] for i in range(max_samples))
        return self.model_copy(update={"location_sequence": kept})


# =============================================================================
# Recognition outputs
# =============================================================================


class AttributesPayload(_PayloadBase):
    """Attribute vector recognised for one tracklet."""

    kind: Literal["attributes"] = "attributes"
    data_kind: ClassVar[DataKind | None] = DataKind.ATTRIBUTES

    tracklet_id: TrackletIdentifier | None = None
    values: dict[str, float] = Field(default_factory=dict)


class FeaturePayload(_PayloadBase):
    """Re-identification feature vector for one tracklet."""

    kind: Literal["reid_feature"] = "reid_feature"
    data_kind: ClassVar[DataKind | None] = DataKind.REID_FEATURE

    tracklet_id: TrackletIdentifier | None = None
    vector: tuple[float, ...]


class IDRankPayload(_PayloadBase):
    """Candidate identities ranked by similarity to a query tracklet."""

    kind: Literal["id_rank"] = "id_rank"
    data_kind: ClassVar[DataKind | None] = DataKind.IDRANK

    tracklet_id: TrackletIdentifier | None = None
    ranked_ids: tuple[str, ...]


class TrackletAttrPayload(_PayloadBase):
    """A tracklet (inline or by URL) together with its attributes."""

    kind: Literal["tracklet_attr"] = "tracklet_attr"
    data_kind: ClassVar[DataKind | None] = DataKind.TRACKLET_ATTR

    tracklet: TrackletPayload | None = None
    tracklet_url: str | None = None
    attributes: AttributesPayload


class FrameArrayPayload(_PayloadBase):
    """Raw decoded frames of identical geometry."""

    kind: Literal["frame_array"] = "frame_array"
    data_kind: ClassVar[DataKind | None] = DataKind.FRAME_ARRAY

    width: int = Field(gt=0)
    height: int = Field(gt=0)
    channels: int = Field(default=3, gt=0)
    frames: tuple[bytes, ...] = ()


# =============================================================================
# Control payloads
# =============================================================================


class CommandPayload(_PayloadBase):
    """User command selecting a topology, with its parameters."""

    kind: Literal["command"] = "command"
    data_kind: ClassVar[DataKind | None] = DataKind.COMMAND

    command: str
    params: dict[str, JsonValue] = Field(default_factory=dict)
    # Tasks started by this command derive their ids from it
    request_id: str | None = None


class LoginParamPayload(_PayloadBase):
    """Login parameters for a web camera."""

    kind: Literal["login_param"] = "login_param"
    data_kind: ClassVar[DataKind | None] = DataKind.WEBCAM_LOGIN_PARAM

    host: str
    port: int
    username: str
    password: str = Field(repr=False)


class TermSignalPayload(_PayloadBase):
    """Asks downstream stages to stop tracking a task. Enforcement is cooperative."""

    kind: Literal["term_sig"] = "term_sig"
    data_kind: ClassVar[DataKind | None] = DataKind.TERM_SIG

    target_task_id: str


class BlobReference(_PayloadBase):
    """Stands in for a payload that was spilled to the bulk store.

    ``data_kind`` is None: a reference may replace a payload of any kind.
    """

    kind: Literal["blob_ref"] = "blob_ref"

    path: str
    size: int = Field(ge=0)


Payload = Annotated[
    UrlPayload
    | TrackletPayload
    | AttributesPayload
    | FeaturePayload
    | IDRankPayload
    | TrackletAttrPayload
    | FrameArrayPayload
    | CommandPayload
    | LoginParamPayload
    | TermSignalPayload
    | BlobReference,
    Field(discriminator="kind"),
]

PAYLOAD_ADAPTER: TypeAdapter[Payload] = TypeAdapter(Payload)


def payload_to_bytes(payload: Payload) -> bytes:
    """Encode a payload as self-describing JSON bytes."""
    try:
        return PAYLOAD_ADAPTER.dump_json(payload)
    except (ValueError, TypeError) as e:
        raise SerializationError(f"Cannot encode {type(payload).__name__}: {e}") from e


def payload_from_bytes(data: bytes) -> Payload:
    """Decode bytes produced by payload_to_bytes().

    Raises:
        SerializationError: If the bytes are not a known payload variant
    """
    try:
        return PAYLOAD_ADAPTER.validate_json(data)
    except ValidationError as e:
        raise SerializationError(f"Cannot decode payload: {e.error_count()} validation error(s)") from e
