# src/lasvpe/core/planner.py
"""Planner: turns a user command into an execution plan and initial envelopes.

A command selects one stage topology. The planner builds and validates the
plan once, then emits one task per stored video found under the command's
``video-url`` parameter, with the command name as its tag. Task ids are
fresh, or derived from the command's request id and the video so that a
retried submission republishes the same tasks.

Topologies (node -> nodes it feeds):

    track                        tracking -> tracklet-saving
    track-attrrecog              tracking -> attr-recog, tracklet-saving
                                 attr-recog -> attr-saving
    track-reid                   tracking -> reid-feature, tracklet-saving
                                 reid-feature -> feature-saving
    track-attrrecog-reid         tracking -> attr-recog, tracklet-saving
                                 attr-recog -> reid, attr-saving
                                 reid -> idrank-saving
    track-attrrecog-reidfeature  tracking -> attr-recog, reid-feature, tracklet-saving
                                 attr-recog -> attr-saving
                                 reid-feature -> feature-saving
    attrrecog                    attr-recog -> attr-saving
    attrrecog-reid               attr-recog -> reid, attr-saving
                                 reid -> idrank-saving
    reid                         reid -> idrank-saving
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

import structlog
from pydantic import JsonValue

from lasvpe.contracts.enums import CommandType, DataKind
from lasvpe.contracts.envelope import TaskEnvelope, derived_task_id, new_task_id
from lasvpe.contracts.errors import LasVpeError, SerializationError, UnsupportedCommandError
from lasvpe.contracts.payloads import (
    AttributesPayload,
    CommandPayload,
    Payload,
    TrackletAttrPayload,
    TrackletIdentifier,
    UrlPayload,
    payload_from_bytes,
)
from lasvpe.contracts.plan import BoundPort, ExecutionPlan, Node, Port
from lasvpe.core.layout import attributes_path, tracklet_path

if TYPE_CHECKING:
    from lasvpe.contracts.blob_store import BlobStore
    from lasvpe.engine.offload import OversizePayloadOffloader
    from lasvpe.engine.retry import RobustExecutor

slog = structlog.get_logger(__name__)

PLANNER_STAGE = "message-handling"

_VIDEO_COMMANDS = frozenset(
    {
        CommandType.TRACK_ONLY,
        CommandType.TRACK_ATTRRECOG,
        CommandType.TRACK_REID,
        CommandType.TRACK_ATTRRECOG_REID,
        CommandType.TRACK_ATTRRECOG_REIDFEATURE,
    }
)


class Parameter:
    """Keys of a command's parameter map."""

    VIDEO_URL = "video-url"
    TRACKING_CONF_FILE = "tracking-conf-file"
    TRACKLET_INDEX = "tracklet-serial-num"


class Ports:
    """Well-known input ports of the builtin stages."""

    COMMAND = Port(stage=PLANNER_STAGE, kind=DataKind.COMMAND)

    TRACKING_VIDEO_URL = Port(stage="pedestrian-tracking", kind=DataKind.URL)

    ATTR_RECOG_TRACKLET = Port(stage="pedestrian-attr-recog", kind=DataKind.TRACKLET)
    ATTR_RECOG_TRACKLET_URL = Port(stage="pedestrian-attr-recog", kind=DataKind.URL)

    REID_FEATURE_TRACKLET = Port(stage="pedestrian-reid-feature-extraction", kind=DataKind.TRACKLET)

    REID_ATTR = Port(stage="pedestrian-reid", kind=DataKind.ATTRIBUTES)
    REID_TRACKLET_ATTR = Port(stage="pedestrian-reid", kind=DataKind.TRACKLET_ATTR)

    TRACKLET_SAVING = Port(stage="tracklet-saving", kind=DataKind.TRACKLET)
    ATTR_SAVING = Port(stage="attr-saving", kind=DataKind.ATTRIBUTES)
    REID_FEATURE_SAVING = Port(stage="reid-feature-saving", kind=DataKind.REID_FEATURE)
    IDRANK_SAVING = Port(stage="idrank-saving", kind=DataKind.IDRANK)


@dataclass(frozen=True)
class Topology:
    """A built plan and the ports its initial envelopes target."""

    command: CommandType
    plan: ExecutionPlan
    start_ports: tuple[BoundPort, ...]


def parse_command(command: str) -> CommandType:
    """Map a command name to a plannable CommandType.

    Raises:
        UnsupportedCommandError: Unknown or real-time command
    """
    try:
        command_type = CommandType(command)
    except ValueError:
        raise UnsupportedCommandError(command) from None
    if command_type.is_realtime:
        raise UnsupportedCommandError(command)
    return command_type


def build_topology(command: CommandType, tracking_conf: JsonValue = None) -> Topology:
    """Build and validate the plan of ``command``.

    Args:
        command: Plannable command
        tracking_conf: Name of the tracking configuration file (exec param
            of the tracking node)

    Raises:
        UnsupportedCommandError: Real-time commands
        MalformedPlanError: If the built plan fails validation
    """
    plan = ExecutionPlan()

    match command:
        case CommandType.TRACK_ONLY:
            tracking = _tracking(plan, tracking_conf)
            start = (tracking.create_input_port(Ports.TRACKING_VIDEO_URL),)

        case CommandType.TRACK_ATTRRECOG:
            tracking = _tracking(plan, tracking_conf)
            start = (tracking.create_input_port(Ports.TRACKING_VIDEO_URL),)
            attr = _attr_recognition(plan)
            tracking.output_to(attr.create_input_port(Ports.ATTR_RECOG_TRACKLET))

        case CommandType.TRACK_REID:
            tracking = _tracking(plan, tracking_conf)
            start = (tracking.create_input_port(Ports.TRACKING_VIDEO_URL),)
            feature = _feature_extraction(plan)
            tracking.output_to(feature.create_input_port(Ports.REID_FEATURE_TRACKLET))

        case CommandType.TRACK_ATTRRECOG_REID:
            tracking = _tracking(plan, tracking_conf)
            start = (tracking.create_input_port(Ports.TRACKING_VIDEO_URL),)
            attr = _attr_recognition(plan)
            tracking.output_to(attr.create_input_port(Ports.ATTR_RECOG_TRACKLET))
            reid = _reid(plan)
            attr.output_to(reid.create_input_port(Ports.REID_ATTR))

        case CommandType.TRACK_ATTRRECOG_REIDFEATURE:
            tracking = _tracking(plan, tracking_conf)
            start = (tracking.create_input_port(Ports.TRACKING_VIDEO_URL),)
            attr = _attr_recognition(plan)
            tracking.output_to(attr.create_input_port(Ports.ATTR_RECOG_TRACKLET))
            feature = _feature_extraction(plan)
            tracking.output_to(feature.create_input_port(Ports.REID_FEATURE_TRACKLET))

        case CommandType.ATTRRECOG_ONLY:
            attr = _attr_recognition(plan)
            start = (attr.create_input_port(Ports.ATTR_RECOG_TRACKLET_URL),)

        case CommandType.ATTRRECOG_REID:
            attr = _attr_recognition(plan)
            reid = _reid(plan)
            attr.output_to(reid.create_input_port(Ports.REID_ATTR))
            start = (attr.create_input_port(Ports.ATTR_RECOG_TRACKLET_URL),)

        case CommandType.REID_ONLY:
            reid = _reid(plan)
            start = (reid.create_input_port(Ports.REID_TRACKLET_ATTR),)

        case _:
            raise UnsupportedCommandError(command.value)

    plan.validate_plan()
    return Topology(command=command, plan=plan, start_ports=start)


def _tracking(plan: ExecutionPlan, tracking_conf: JsonValue) -> Node:
    node = plan.add_node(DataKind.TRACKLET, tracking_conf, node_id="tracking")
    saving = plan.add_node(DataKind.NONE, node_id="tracklet-saving")
    node.output_to(saving.create_input_port(Ports.TRACKLET_SAVING))
    return node


def _attr_recognition(plan: ExecutionPlan) -> Node:
    node = plan.add_node(DataKind.ATTRIBUTES, node_id="attr-recog")
    saving = plan.add_node(DataKind.NONE, node_id="attr-saving")
    node.output_to(saving.create_input_port(Ports.ATTR_SAVING))
    return node


def _feature_extraction(plan: ExecutionPlan) -> Node:
    node = plan.add_node(DataKind.REID_FEATURE, node_id="reid-feature")
    saving = plan.add_node(DataKind.NONE, node_id="feature-saving")
    node.output_to(saving.create_input_port(Ports.REID_FEATURE_SAVING))
    return node


def _reid(plan: ExecutionPlan) -> Node:
    node = plan.add_node(DataKind.IDRANK, node_id="reid")
    saving = plan.add_node(DataKind.NONE, node_id="idrank-saving")
    node.output_to(saving.create_input_port(Ports.IDRANK_SAVING))
    return node


def command_envelope(command: str, params: Mapping[str, JsonValue] | None = None) -> TaskEnvelope:
    """Envelope delivering a command to the planner stage.

    The envelope's task id doubles as the command's request id.
    """
    plan = ExecutionPlan()
    node = plan.add_node(DataKind.NONE, node_id=PLANNER_STAGE)
    start = node.create_input_port(Ports.COMMAND)
    task_id = new_task_id()
    payload = CommandPayload(command=command, params=dict(params or {}), request_id=task_id)
    return TaskEnvelope.create(plan, [start], payload, tag=command, task_id=task_id)


class Planner:
    """Builds plans for commands and publishes their initial envelopes.

    Example:
        planner = Planner(store, offloader)
        envelopes = planner.submit("track", {"video-url": "videos/", "tracking-conf-file": "isee-basic.conf"})
    """

    def __init__(
        self,
        store: BlobStore,
        publisher: OversizePayloadOffloader,
        *,
        executor: RobustExecutor | None = None,
    ) -> None:
        self._store = store
        self._publisher = publisher
        self._executor = executor

    def list_videos(self, video_url: str) -> list[str]:
        """Stored videos under ``video_url``, or the URL itself if it is not a stored directory."""
        directory = video_url.rstrip("/")
        videos = self._store.list(f"{directory}/") if directory else []
        return videos or [video_url]

    def plan_tasks(
        self,
        command: str,
        params: Mapping[str, JsonValue],
        *,
        request_id: str | None = None,
    ) -> list[TaskEnvelope]:
        """Initial envelopes of every task ``command`` starts, without publishing.

        With a ``request_id``, each task id is derived from it and the video,
        so planning the same request twice yields the same tasks.

        Raises:
            UnsupportedCommandError: Unknown or real-time command
            ValueError: Missing or invalid parameters
        """
        command_type = parse_command(command)
        video_url = _require_str(params, Parameter.VIDEO_URL)
        serial_number = None if command_type in _VIDEO_COMMANDS else _require_int(params, Parameter.TRACKLET_INDEX)
        topology = build_topology(command_type, params.get(Parameter.TRACKING_CONF_FILE))

        envelopes: list[TaskEnvelope] = []
        for video in self.list_videos(video_url):
            payload = self._initial_payload(command_type, video, serial_number)
            if payload is None:
                continue
            task_id = derived_task_id(request_id, video) if request_id is not None else None
            envelopes.append(
                TaskEnvelope.create(
                    topology.plan,
                    topology.start_ports,
                    payload,
                    tag=command_type.value,
                    task_id=task_id,
                )
            )
        return envelopes

    def submit(
        self,
        command: str,
        params: Mapping[str, JsonValue],
        *,
        request_id: str | None = None,
    ) -> list[TaskEnvelope]:
        """Plan ``command`` and publish its initial envelopes.

        Returns:
            The envelopes as published (oversize payloads replaced by references)
        """
        published = [
            self._publisher.publish(envelope, node_id=PLANNER_STAGE)
            for envelope in self.plan_tasks(command, params, request_id=request_id)
        ]
        slog.info(
            "command_submitted",
            command=command,
            task_count=len(published),
            task_ids=[e.task_id for e in published],
        )
        return published

    def _initial_payload(self, command: CommandType, video: str, serial_number: int | None) -> Payload | None:
        if serial_number is None:
            return UrlPayload(url=video)

        tracklet_id = TrackletIdentifier(video_id=PurePosixPath(video).stem, serial_number=serial_number)
        if command is not CommandType.REID_ONLY:
            return UrlPayload(url=tracklet_path(tracklet_id))

        try:
            attributes = self._load_attributes(tracklet_id)
        except LasVpeError as e:
            slog.error("task_skipped_attributes_unavailable", tracklet_id=str(tracklet_id), error=str(e))
            return None
        return TrackletAttrPayload(tracklet_url=tracklet_path(tracklet_id), attributes=attributes)

    def _load_attributes(self, tracklet_id: TrackletIdentifier) -> AttributesPayload:
        path = attributes_path(tracklet_id)

        def load() -> AttributesPayload:
            payload = payload_from_bytes(self._store.get(path))
            if not isinstance(payload, AttributesPayload):
                raise SerializationError(f"{path} holds a {payload.kind} payload, not attributes")
            return payload

        if self._executor is None:
            return load()
        return self._executor.execute(load)


def _require_str(params: Mapping[str, JsonValue], key: str) -> str:
    value = params.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"Command parameter {key!r} must be a non-empty string, got {value!r}")
    return value


def _require_int(params: Mapping[str, JsonValue], key: str) -> int:
    value = params.get(key)
    if isinstance(value, bool):
        raise ValueError(f"Command parameter {key!r} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            pass
    raise ValueError(f"Command parameter {key!r} must be an integer, got {value!r}")
