# tests/helpers.py
"""Test stages and plan builders shared across test modules."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from pydantic import JsonValue

from lasvpe.contracts import DataKind, ExecutionPlan, Payload, Port, StageResult, TaskEnvelope, UrlPayload
from lasvpe.plugins.base import BaseStage
from lasvpe.plugins.context import StageContext


class FunctionStage(BaseStage):
    """Stage whose algorithm is a plain function; records every call."""

    def __init__(
        self,
        context: StageContext,
        name: str,
        ports: Iterable[Port],
        fn: Callable[[JsonValue, Payload], StageResult],
        *,
        resolve_references: bool = True,
    ) -> None:
        super().__init__(context)
        self.name = name  # type: ignore[misc]
        self.ports = tuple(ports)  # type: ignore[misc]
        self.resolve_references = resolve_references  # type: ignore[misc]
        self.fn = fn
        self.calls: list[tuple[JsonValue, Payload]] = []
        self.started = False
        self.closed = False

    def process(self, exec_param: JsonValue, payload: Payload) -> StageResult:
        self.calls.append((exec_param, payload))
        return self.fn(exec_param, payload)

    def on_start(self) -> None:
        self.started = True

    def close(self) -> None:
        self.closed = True


def returning(result: StageResult) -> Callable[[JsonValue, Payload], StageResult]:
    def fn(exec_param: JsonValue, payload: Payload) -> StageResult:
        return result

    return fn


def sink(exec_param: JsonValue, payload: Payload) -> None:
    return None


def fan_out_plan() -> tuple[ExecutionPlan, dict[str, Any]]:
    """NodeA(TRACKLET) feeding NodeB and NodeC through TRACKLET ports.

    Returns the plan and a dict of the interesting ports and nodes.
    """
    plan = ExecutionPlan()
    node_a = plan.add_node(DataKind.TRACKLET, exec_param="a.conf", node_id="NodeA")
    node_b = plan.add_node(DataKind.NONE, node_id="NodeB")
    node_c = plan.add_node(DataKind.NONE, node_id="NodeC")

    port_a = Port(stage="stage-a", kind=DataKind.URL)
    port_b = Port(stage="stage-b", kind=DataKind.TRACKLET)
    port_c = Port(stage="stage-c", kind=DataKind.TRACKLET)

    start = node_a.create_input_port(port_a)
    node_a.output_to(node_b.create_input_port(port_b))
    node_a.output_to(node_c.create_input_port(port_c))
    return plan, {"start": start, "port_a": port_a, "port_b": port_b, "port_c": port_c}


def video_envelope(plan: ExecutionPlan, start: Any, task_id: str = "T1") -> TaskEnvelope:
    return TaskEnvelope.create(plan, [start], UrlPayload(url="video://cam1/clip1"), task_id=task_id, tag="test")
