# src/lasvpe/plugins/stages/tracking.py
"""Deterministic stand-in for the pedestrian tracker.

Produces a configurable number of synthetic tracklets per video. The
tracking configuration file named by the node's exec param is read from the
broadcast pool (YAML mapping):

    num_tracklets: 3     # tracklets per video
    track_length: 8      # bounding boxes per tracklet before sampling
    max_samples: 5       # boxes kept per tracklet (0 = keep all)
    patch_size: 4        # patch edge in pixels (RGB)
"""

from pathlib import PurePosixPath
from typing import Any, ClassVar

import yaml
from pydantic import JsonValue

from lasvpe.contracts.errors import FatalStageError
from lasvpe.contracts.payloads import BoundingBox, Payload, TrackletIdentifier, TrackletPayload, UrlPayload
from lasvpe.contracts.plan import Port
from lasvpe.core.planner import Ports
from lasvpe.plugins.base import BaseStage

DEFAULT_TRACKING_CONF: dict[str, int] = {
    "num_tracklets": 3,
    "track_length": 8,
    "max_samples": 5,
    "patch_size": 4,
}


class FakePedestrianTracker(BaseStage):
    """Emits one TrackletPayload per synthetic pedestrian in the video."""

    name = "pedestrian-tracking"
    ports: ClassVar[tuple[Port, ...]] = (Ports.TRACKING_VIDEO_URL,)

    def process(self, exec_param: JsonValue, payload: Payload) -> list[TrackletPayload]:
        video = self.expect(payload, UrlPayload)
        conf = self.tracking_conf(exec_param)
        video_id = PurePosixPath(video.url).stem or video.url
        num_tracklets = conf["num_tracklets"]
        return [
            self._tracklet(video_id, serial, num_tracklets, conf).sample(conf["max_samples"])
            for serial in range(num_tracklets)
        ]

    def tracking_conf(self, exec_param: JsonValue) -> dict[str, int]:
        """Defaults overlaid with the broadcast configuration file ``exec_param``.

        Raises:
            FatalStageError: Unknown file, or content that is not a mapping of integers
        """
        if exec_param is None:
            return dict(DEFAULT_TRACKING_CONF)
        if not isinstance(exec_param, str):
            raise FatalStageError(f"Tracking exec param must be a configuration file name, got {exec_param!r}")

        pool = self.context.broadcast.get()
        if exec_param not in pool:
            raise FatalStageError(f"Tracking configuration {exec_param!r} was not broadcast (have {sorted(pool)})")
        loaded: Any = yaml.safe_load(pool.text(exec_param)) or {}
        if not isinstance(loaded, dict):
            raise FatalStageError(f"Tracking configuration {exec_param!r} must be a mapping")

        conf = dict(DEFAULT_TRACKING_CONF)
        for key, value in loaded.items():
            if key not in conf:
                raise FatalStageError(f"Unknown tracking option {key!r} in {exec_param!r}")
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise FatalStageError(f"Tracking option {key!r} must be a non-negative integer, got {value!r}")
            conf[key] = value
        if conf["patch_size"] == 0:
            raise FatalStageError("Tracking option 'patch_size' must be positive")
        return conf

    @staticmethod
    def _tracklet(video_id: str, serial: int, num_tracklets: int, conf: dict[str, int]) -> TrackletPayload:
        size = conf["patch_size"]
        boxes = tuple(
            BoundingBox(
                x=10 * serial + frame,
                y=5 * serial + frame,
                width=size,
                height=size,
                patch_data=bytes((serial * 31 + frame + i) % 256 for i in range(size * size * 3)),
            )
            for frame in range(conf["track_length"])
        )
        return TrackletPayload(
            id=TrackletIdentifier(video_id=video_id, serial_number=serial),
            start_frame_index=serial * 100,
            num_tracklets=num_tracklets,
            location_sequence=boxes,
        )
