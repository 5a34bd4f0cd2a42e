# tests/engine/test_worker.py
"""Tests for the Worker demultiplexer."""

import threading
import time
from typing import Any

import pytest
import structlog
from pydantic import JsonValue
from structlog.testing import capture_logs

from lasvpe.contracts import (
    DataKind,
    ExecutionPlan,
    Payload,
    Port,
    TaskEnvelope,
    TrackletIdentifier,
    TrackletPayload,
)
from lasvpe.core.blob_store import FilesystemBlobStore
from lasvpe.core.bus import InMemoryBus
from lasvpe.core.config import LasVpeSettings
from lasvpe.engine.claims import InMemoryClaimStore
from lasvpe.engine.offload import OversizePayloadOffloader
from lasvpe.engine.retry import RobustExecutor
from lasvpe.engine.runtime import StageRuntime, TaskOutcome
from lasvpe.engine.worker import Worker
from lasvpe.plugins.context import StageContext
from tests.helpers import FunctionStage, fan_out_plan, returning, sink, video_envelope

TRACKLETS = "lasvpe.tracklet"
S1_PORT = Port(stage="s1", kind=DataKind.TRACKLET)
S2_PORT = Port(stage="s2", kind=DataKind.TRACKLET)


def _tracklet(serial: int = 0) -> TrackletPayload:
    return TrackletPayload(id=TrackletIdentifier(video_id="clip1", serial_number=serial))


def _two_sink_plan() -> ExecutionPlan:
    plan = ExecutionPlan()
    plan.add_node(DataKind.NONE, node_id="n1").create_input_port(S1_PORT)
    plan.add_node(DataKind.NONE, node_id="n2").create_input_port(S2_PORT)
    return plan


@pytest.fixture
def runtime_for(
    stage_context: StageContext,
    offloader: OversizePayloadOffloader,
    no_wait_executor: RobustExecutor,
) -> Any:
    claims = InMemoryClaimStore()

    def make(name: str, ports: list[Port], fn: Any = sink) -> StageRuntime:
        stage = FunctionStage(stage_context, name, ports, fn)
        return StageRuntime(stage, offloader, executor=no_wait_executor, claims=claims)

    return make


class TestConstruction:
    def test_requires_stages(self, bus: InMemoryBus) -> None:
        with pytest.raises(ValueError, match="at least one"):
            Worker(bus, [], group="g")

    def test_rejects_duplicate_stage_names(self, bus: InMemoryBus, runtime_for: Any) -> None:
        with pytest.raises(ValueError, match="Duplicate"):
            Worker(bus, [runtime_for("s1", [S1_PORT]), runtime_for("s1", [S1_PORT])], group="g")

    def test_rejects_empty_pool(self, bus: InMemoryBus, runtime_for: Any) -> None:
        with pytest.raises(ValueError, match="max_workers"):
            Worker(bus, [runtime_for("s1", [S1_PORT])], group="g", max_workers=0)

    def test_channels_are_union_of_ports(self, bus: InMemoryBus, runtime_for: Any) -> None:
        worker = Worker(
            bus,
            [runtime_for("s1", [S1_PORT, Port(stage="s1", kind=DataKind.URL)]), runtime_for("s2", [S2_PORT])],
            group="g",
        )

        assert worker.channels == ("lasvpe.tracklet", "lasvpe.url")

    def test_from_settings(self, bus: InMemoryBus, blob_store: FilesystemBlobStore, stage_context: StageContext) -> None:
        settings = LasVpeSettings.model_validate(
            {"bus": {"consumer_group": "analytics"}, "worker": {"name": "savers", "max_workers": 2}}
        )
        stages = [FunctionStage(stage_context, "s1", [S1_PORT], sink), FunctionStage(stage_context, "s2", [S2_PORT], sink)]

        worker = Worker.from_settings(settings, bus, blob_store, stages)

        assert worker.group == "analytics.savers"
        assert worker.name == "savers"
        assert [runtime.name for runtime in worker.runtimes] == ["s1", "s2"]


class TestDemultiplexing:
    def test_envelope_reaches_only_the_declaring_stage(
        self,
        bus: InMemoryBus,
        offloader: OversizePayloadOffloader,
        runtime_for: Any,
    ) -> None:
        s1 = runtime_for("s1", [S1_PORT])
        s2 = runtime_for("s2", [S2_PORT])
        offloader.publish(TaskEnvelope.create(_two_sink_plan(), [S2_PORT], _tracklet(), task_id="T1"), node_id="n0")

        with Worker(bus, [s1, s2], group="g") as worker:
            outcomes = worker.run_once(timeout=0.1)

        assert outcomes == [TaskOutcome.COMPLETED]
        assert s1.stage.calls == []
        assert len(s2.stage.calls) == 1

    def test_envelope_with_two_destinations_reaches_both(
        self,
        bus: InMemoryBus,
        offloader: OversizePayloadOffloader,
        runtime_for: Any,
    ) -> None:
        s1 = runtime_for("s1", [S1_PORT])
        s2 = runtime_for("s2", [S2_PORT])
        offloader.publish(
            TaskEnvelope.create(_two_sink_plan(), [S1_PORT, S2_PORT], _tracklet(), task_id="T1"), node_id="n0"
        )

        with Worker(bus, [s1, s2], group="g") as worker:
            outcomes = worker.run_once(timeout=0.1)

        assert outcomes == [TaskOutcome.COMPLETED, TaskOutcome.COMPLETED]
        assert len(s1.stage.calls) == len(s2.stage.calls) == 1

    def test_full_fan_out_plan_in_one_worker(
        self,
        bus: InMemoryBus,
        offloader: OversizePayloadOffloader,
        runtime_for: Any,
    ) -> None:
        plan, ports = fan_out_plan()
        a = runtime_for("stage-a", [ports["port_a"]], returning(_tracklet()))
        b = runtime_for("stage-b", [ports["port_b"]])
        c = runtime_for("stage-c", [ports["port_c"]])
        offloader.publish(video_envelope(plan, ports["start"]), node_id="planner")

        with Worker(bus, [a, b, c], group="g") as worker:
            first = worker.run_once(timeout=0.1)
            second = worker.run_once(timeout=0.1)

        assert first == [TaskOutcome.FORWARDED]
        assert second == [TaskOutcome.COMPLETED, TaskOutcome.COMPLETED]
        assert b.stage.calls == c.stage.calls == [(None, _tracklet())]

    def test_undecodable_record_discarded(self, bus: InMemoryBus, runtime_for: Any) -> None:
        s1 = runtime_for("s1", [S1_PORT])
        bus.publish(TRACKLETS, "T1", b"\x00garbage")

        with capture_logs() as logs, Worker(bus, [s1], group="g") as worker:
            outcomes = worker.run_once(timeout=0.1)

        assert outcomes == []
        assert s1.stage.calls == []
        [event] = [e for e in logs if e["event"] == "envelope_discarded"]
        assert event["key"] == "T1"
        assert event["error"]["type"] == "SerializationError"

    def test_redelivered_envelope_runs_once(
        self,
        bus: InMemoryBus,
        offloader: OversizePayloadOffloader,
        runtime_for: Any,
    ) -> None:
        s2 = runtime_for("s2", [S2_PORT])
        offloader.publish(TaskEnvelope.create(_two_sink_plan(), [S2_PORT], _tracklet(), task_id="T1"), node_id="n0")

        with Worker(bus, [s2], group="g") as worker:
            first = worker.run_once(timeout=0.1)
            bus.redeliver("g", TRACKLETS)
            second = worker.run_once(timeout=0.1)

        assert first == [TaskOutcome.COMPLETED]
        assert second == [TaskOutcome.DUPLICATE]
        assert len(s2.stage.calls) == 1

    def test_records_of_one_task_handled_in_order(
        self,
        bus: InMemoryBus,
        offloader: OversizePayloadOffloader,
        stage_context: StageContext,
    ) -> None:
        plan = _two_sink_plan()
        seen: list[int] = []

        def record(exec_param: JsonValue, payload: Payload) -> None:
            assert isinstance(payload, TrackletPayload)
            time.sleep(0.001 * (5 - payload.id.serial_number))
            seen.append(payload.id.serial_number)

        # No claim store: each envelope is a separate delivery of node n1
        runtime = StageRuntime(FunctionStage(stage_context, "s1", [S1_PORT], record), offloader)
        for serial in range(5):
            offloader.publish(TaskEnvelope.create(plan, [S1_PORT], _tracklet(serial), task_id="T1"), node_id="n0")

        with Worker(bus, [runtime], group="g", max_workers=4) as worker:
            worker.run_once(timeout=0.1)

        assert seen == [0, 1, 2, 3, 4]

    def test_other_workers_group_sees_every_record(
        self,
        bus: InMemoryBus,
        offloader: OversizePayloadOffloader,
        runtime_for: Any,
    ) -> None:
        offloader.publish(TaskEnvelope.create(_two_sink_plan(), [S1_PORT, S2_PORT], _tracklet(), task_id="T1"), node_id="n0")

        with (
            Worker(bus, [runtime_for("s1", [S1_PORT])], group="g1") as w1,
            Worker(bus, [runtime_for("s2", [S2_PORT])], group="g2") as w2,
        ):
            assert w1.run_once(timeout=0.1) == [TaskOutcome.COMPLETED]
            assert w2.run_once(timeout=0.1) == [TaskOutcome.COMPLETED]


class TestTaskContext:
    def test_stage_sees_record_context(
        self,
        bus: InMemoryBus,
        offloader: OversizePayloadOffloader,
        runtime_for: Any,
    ) -> None:
        seen: list[dict[str, Any]] = []

        def note(exec_param: JsonValue, payload: Payload) -> None:
            seen.append(structlog.contextvars.get_contextvars())

        offloader.publish(TaskEnvelope.create(_two_sink_plan(), [S1_PORT], _tracklet(), task_id="T1"), node_id="n0")
        with Worker(bus, [runtime_for("s1", [S1_PORT], note)], group="g", name="w1") as worker:
            worker.run_once(timeout=0.1)

        assert seen == [{"worker": "w1", "channel": TRACKLETS, "task_id": "T1"}]
        assert structlog.contextvars.get_contextvars() == {}


class TestLifecycle:
    def test_start_and_close(self, bus: InMemoryBus, runtime_for: Any) -> None:
        s1 = runtime_for("s1", [S1_PORT])
        worker = Worker(bus, [s1], group="g")

        worker.start()
        worker.start()

        assert worker.started
        assert s1.stage.started
        worker.close()
        worker.close()
        assert not worker.started
        assert s1.stage.closed

    def test_run_until_stopped(
        self,
        bus: InMemoryBus,
        offloader: OversizePayloadOffloader,
        runtime_for: Any,
    ) -> None:
        handled = threading.Event()

        def note(exec_param: JsonValue, payload: Payload) -> None:
            handled.set()

        worker = Worker(bus, [runtime_for("s1", [S1_PORT], note)], group="g", poll_timeout=0.01)
        thread = threading.Thread(target=worker.run)
        thread.start()
        try:
            offloader.publish(TaskEnvelope.create(_two_sink_plan(), [S1_PORT], _tracklet(), task_id="T1"), node_id="n0")
            assert handled.wait(timeout=5.0)
        finally:
            worker.stop()
            thread.join(timeout=5.0)
            worker.close()

        assert not thread.is_alive()

    def test_run_once_without_records(self, bus: InMemoryBus, runtime_for: Any) -> None:
        with Worker(bus, [runtime_for("s1", [S1_PORT])], group="g") as worker:
            assert worker.run_once(timeout=0.01) == []

    def test_run_once_starts_worker(
        self,
        bus: InMemoryBus,
        offloader: OversizePayloadOffloader,
        runtime_for: Any,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        s1 = runtime_for("s1", [S1_PORT])
        offloader.publish(TaskEnvelope.create(_two_sink_plan(), [S1_PORT], _tracklet(), task_id="T1"), node_id="n0")
        worker = Worker(bus, [s1], group="g")
        try:
            outcomes = worker.run_once(timeout=0.1)
            assert worker.started
            assert s1.stage.started
        finally:
            worker.close()

        assert outcomes == [TaskOutcome.COMPLETED]
        # Closed between start() and the poll
        monkeypatch.setattr(worker, "start", lambda: None)
        with pytest.raises(RuntimeError, match="closed"):
            worker.run_once(timeout=0.01)

    def test_envelope_for_other_stage_ignored(
        self,
        bus: InMemoryBus,
        offloader: OversizePayloadOffloader,
        runtime_for: Any,
    ) -> None:
        plan, ports = fan_out_plan()
        other = runtime_for("other", [Port(stage="other", kind=DataKind.URL)])
        offloader.publish(video_envelope(plan, ports["start"]), node_id="planner")

        with Worker(bus, [other], group="g") as worker:
            outcomes = worker.run_once(timeout=0.1)

        assert outcomes == []
        assert other.stage.calls == []
        assert bus.pending("g") == 0
