"""Shared contracts for cross-boundary data types.

Everything that crosses a process or subsystem boundary (plans, envelopes,
payloads, errors, and the protocols of external collaborators) is defined
here. This package is a LEAF: it never imports from core, engine or plugins.

Import patterns:
    from lasvpe.contracts import DataKind, ExecutionPlan, Port, TaskEnvelope
    from lasvpe.core.config import LasVpeSettings
"""

from lasvpe.contracts.blob_store import BlobStore
from lasvpe.contracts.bus import MessageBus, Record, Subscription
from lasvpe.contracts.enums import CommandType, DataKind
from lasvpe.contracts.envelope import TaskEnvelope, derived_task_id, new_task_id
from lasvpe.contracts.errors import (
    BlobNotFoundError,
    ExecutionError,
    FatalStageError,
    LasVpeError,
    MalformedPlanError,
    PortUnboundError,
    SerializationError,
    SizeLimitExceeded,
    StageError,
    TransientBusError,
    TransientStageError,
    UnsupportedCommandError,
    execution_error,
)
from lasvpe.contracts.payloads import (
    AttributesPayload,
    BlobReference,
    BoundingBox,
    CommandPayload,
    FeaturePayload,
    FrameArrayPayload,
    IDRankPayload,
    LoginParamPayload,
    Payload,
    TermSignalPayload,
    TrackletAttrPayload,
    TrackletIdentifier,
    TrackletPayload,
    UrlPayload,
    payload_from_bytes,
    payload_to_bytes,
)
from lasvpe.contracts.plan import BoundPort, ExecutionPlan, Node, Port
from lasvpe.contracts.stage import StageProtocol, StageResult

__all__ = [
    "AttributesPayload",
    "BlobNotFoundError",
    "BlobReference",
    "BlobStore",
    "BoundPort",
    "BoundingBox",
    "CommandPayload",
    "CommandType",
    "DataKind",
    "ExecutionError",
    "ExecutionPlan",
    "FatalStageError",
    "FeaturePayload",
    "FrameArrayPayload",
    "IDRankPayload",
    "LasVpeError",
    "LoginParamPayload",
    "MalformedPlanError",
    "MessageBus",
    "Node",
    "Payload",
    "Port",
    "PortUnboundError",
    "Record",
    "SerializationError",
    "SizeLimitExceeded",
    "StageError",
    "StageProtocol",
    "StageResult",
    "Subscription",
    "TaskEnvelope",
    "TermSignalPayload",
    "TrackletAttrPayload",
    "TrackletIdentifier",
    "TrackletPayload",
    "TransientBusError",
    "TransientStageError",
    "UnsupportedCommandError",
    "UrlPayload",
    "derived_task_id",
    "execution_error",
    "new_task_id",
    "payload_from_bytes",
    "payload_to_bytes",
]
