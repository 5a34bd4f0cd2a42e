# tests/integration/test_pipeline_end_to_end.py
"""End-to-end runs of the builtin stages across workers sharing one bus."""

from collections.abc import Iterator, Sequence
from pathlib import Path

import pytest
from pydantic import JsonValue

from lasvpe.contracts import (
    AttributesPayload,
    BlobReference,
    IDRankPayload,
    TaskEnvelope,
    TrackletPayload,
    payload_from_bytes,
)
from lasvpe.core.blob_store import FilesystemBlobStore
from lasvpe.core.bus import InMemoryBus
from lasvpe.core.config import LasVpeSettings
from lasvpe.core.planner import command_envelope
from lasvpe.engine.offload import OversizePayloadOffloader
from lasvpe.engine.retry import RobustExecutor
from lasvpe.engine.worker import Worker
from lasvpe.plugins import BaseStage, StageContext, StageManager

pytestmark = pytest.mark.integration

FRONT_STAGES = ["message-handling", "pedestrian-tracking"]
BACK_STAGES = [
    "pedestrian-attr-recog",
    "pedestrian-reid-feature-extraction",
    "pedestrian-reid",
    "tracklet-saving",
    "attr-saving",
    "reid-feature-saving",
    "idrank-saving",
]


class Cluster:
    """Two workers with disjoint stages, a shared bus and a shared bulk store."""

    def __init__(self, tmp_path: Path, *, max_message_bytes: int = 1_000_000) -> None:
        self.settings = LasVpeSettings.model_validate(
            {
                "bus": {"max_message_bytes": max_message_bytes, "poll_timeout_seconds": 0.01},
                "retry": {"initial_delay_seconds": 0, "max_delay_seconds": 0, "jitter_seconds": 0},
            }
        )
        self.bus = InMemoryBus(max_message_bytes=self.settings.bus.max_message_bytes)
        self.store = FilesystemBlobStore(tmp_path / "blobs")
        self.client = OversizePayloadOffloader(self.bus, self.store)
        context = StageContext.for_store(
            self.store,
            publisher=self.client,
            executor=RobustExecutor.from_settings(self.settings.retry),
        )
        manager = StageManager()
        manager.register_builtin_plugins()
        self.workers = [
            self._worker("front", manager.create_all(FRONT_STAGES, context)),
            self._worker("back", manager.create_all(BACK_STAGES, context)),
        ]
        for worker in self.workers:
            worker.start()

    def _worker(self, name: str, stages: Sequence[BaseStage]) -> Worker:
        settings = self.settings.model_copy(update={"worker": self.settings.worker.model_copy(update={"name": name})})
        return Worker.from_settings(settings, self.bus, self.store, stages)

    def submit(self, command: str, params: dict[str, JsonValue]) -> None:
        self.client.publish(command_envelope(command, params), node_id="client")

    def drain(self, max_rounds: int = 50) -> None:
        for _ in range(max_rounds):
            if all(self.bus.pending(worker.group) == 0 for worker in self.workers):
                return
            for worker in self.workers:
                worker.run_once(timeout=0.0)
        pytest.fail("pipeline did not settle")

    def stored(self, path: str) -> object:
        return payload_from_bytes(self.store.get(path))

    def close(self) -> None:
        for worker in self.workers:
            worker.close()


@pytest.fixture
def cluster(tmp_path: Path) -> Iterator[Cluster]:
    cluster = Cluster(tmp_path)
    cluster.store.put("videos/cam1.mp4", b"\x00")
    cluster.store.put("videos/cam2.mp4", b"\x00")
    yield cluster
    cluster.close()


class TestEndToEnd:
    def test_track_attrrecog_reid(self, cluster: Cluster) -> None:
        cluster.submit("track-attrrecog-reid", {"video-url": "videos/"})

        cluster.drain()

        expected = [f"cam{c}_tarid{s}" for c in (1, 2) for s in range(3)]
        assert cluster.store.list("tracklets/") == [f"tracklets/{t}" for t in expected]
        assert cluster.store.list("attributes/") == [f"attributes/{t}" for t in expected]
        assert cluster.store.list("idranks/") == [f"idranks/{t}" for t in expected]
        tracklet = cluster.stored("tracklets/cam1_tarid0")
        assert isinstance(tracklet, TrackletPayload)
        assert len(tracklet.location_sequence) == 5
        rank = cluster.stored("idranks/cam2_tarid1")
        assert isinstance(rank, IDRankPayload)
        assert "cam2_tarid1" not in rank.ranked_ids

    def test_track_with_features(self, cluster: Cluster) -> None:
        cluster.submit("track-attrrecog-reidfeature", {"video-url": "videos/cam1.mp4"})

        cluster.drain()

        assert cluster.store.list("features/") == [f"features/cam1_tarid{s}" for s in range(3)]
        assert cluster.store.list("attributes/") == [f"attributes/cam1_tarid{s}" for s in range(3)]
        assert cluster.store.list("idranks/") == []

    def test_reid_from_stored_attributes(self, cluster: Cluster) -> None:
        cluster.submit("track-attrrecog", {"video-url": "videos/"})
        cluster.drain()

        cluster.submit("reid", {"video-url": "videos/cam1.mp4", "tracklet-serial-num": 1})
        cluster.drain()

        rank = cluster.stored("idranks/cam1_tarid1")
        assert isinstance(rank, IDRankPayload)
        assert sorted(rank.ranked_ids) == ["cam1_tarid0", "cam1_tarid2", "cam2_tarid0", "cam2_tarid1", "cam2_tarid2"]

    def test_attrrecog_from_stored_tracklets(self, cluster: Cluster) -> None:
        cluster.submit("track", {"video-url": "videos/"})
        cluster.drain()
        assert cluster.store.list("attributes/") == []

        cluster.submit("attrrecog", {"video-url": "videos/", "tracklet-serial-num": 2})
        cluster.drain()

        assert cluster.store.list("attributes/") == ["attributes/cam1_tarid2", "attributes/cam2_tarid2"]
        assert isinstance(cluster.stored("attributes/cam1_tarid2"), AttributesPayload)

    def test_bad_command_drops_only_that_task(self, cluster: Cluster) -> None:
        cluster.submit("rttrack", {"video-url": "videos/"})
        cluster.submit("track", {"video-url": "videos/cam2.mp4"})

        cluster.drain()

        assert cluster.store.list("tracklets/") == [f"tracklets/cam2_tarid{s}" for s in range(3)]


class TestOversizePayloads:
    def test_tracklets_travel_by_reference(self, tmp_path: Path) -> None:
        cluster = Cluster(tmp_path, max_message_bytes=4096)
        cluster.store.put("videos/cam1.mp4", b"\x00")
        cluster.store.put("conf/large-patches.conf", b"patch_size: 16\n")
        try:
            cluster.submit("track", {"video-url": "videos/", "tracking-conf-file": "large-patches.conf"})
            cluster.drain()
        finally:
            cluster.close()

        tracklet = cluster.stored("tracklets/cam1_tarid0")
        assert isinstance(tracklet, TrackletPayload)
        assert len(tracklet.location_sequence[0].patch_data) == 16 * 16 * 3

        references = [TaskEnvelope.deserialize(r.value).payload for r in cluster.bus.published("lasvpe.tracklet")]
        assert len(references) == 3
        assert all(isinstance(ref, BlobReference) for ref in references)
        assert all(len(r.value) <= 4096 for r in cluster.bus.published("lasvpe.tracklet"))
        task_id = TaskEnvelope.deserialize(cluster.bus.published("lasvpe.url")[0].value).task_id
        assert cluster.store.list(f"{task_id}/") == [f"{task_id}/tracking/{i}" for i in range(3)]
