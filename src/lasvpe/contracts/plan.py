# src/lasvpe/contracts/plan.py
"""Execution plans: the DAG of stages one task flows through.

A plan is an arena: nodes live in one flat ordered list and edges refer to
their targets by index. The whole plan is therefore a plain value that
serializes into every envelope with no ownership cycles.

Example:
    plan = ExecutionPlan()
    tracking = plan.add_node(DataKind.TRACKLET, exec_param="isee-basic.conf")
    saving = plan.add_node(DataKind.NONE)
    tracking.output_to(saving.create_input_port(TRACKLET_SAVING_PORT))

    start = tracking.create_input_port(VIDEO_URL_PORT)
"""

from __future__ import annotations

import threading
from collections import Counter

import networkx as nx
from pydantic import BaseModel, ConfigDict, Field, JsonValue

from lasvpe.contracts.enums import DataKind
from lasvpe.contracts.errors import MalformedPlanError, PortUnboundError

# Serializes every claim in the process: concurrent claims on one node have
# exactly one winner.
_CLAIM_LOCK = threading.Lock()


class Port(BaseModel):
    """A named input socket: (owning stage name, accepted data kind)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    stage: str = Field(min_length=1)
    kind: DataKind

    @property
    def channel(self) -> str:
        """Bus channel envelopes destined to this port are published on."""
        return self.kind.channel

    def __str__(self) -> str:
        return f"{self.stage}<{self.kind.value}>"


class BoundPort(BaseModel):
    """A port bound to the node that declared it; also an output edge."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    target: int = Field(ge=0)
    port: Port


class Node(BaseModel):
    """One stage instance within a plan.

    ``executed`` goes false -> true at most once per plan copy and never
    resets. The stage runtime sets it through ExecutionPlan.claim() before
    the stage's algorithm finishes.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    node_id: str
    index: int = Field(ge=0)
    produced_kind: DataKind
    exec_param: JsonValue = None
    input_ports: list[Port] = Field(default_factory=list)
    outputs: list[BoundPort] = Field(default_factory=list)
    executed: bool = False

    def create_input_port(self, port: Port) -> BoundPort:
        """Declare that this node consumes ``port`` and bind it here."""
        if port not in self.input_ports:
            self.input_ports.append(port)
        return BoundPort(target=self.index, port=port)

    def output_to(self, port: BoundPort) -> None:
        """Record an edge from this node to a bound port.

        Acyclicity is the planner's responsibility; see ExecutionPlan.validate_plan().
        """
        self.outputs.append(port)

    def mark_executed(self) -> None:
        """Idempotent: marking an executed node again is a no-op."""
        if not self.executed:
            self.executed = True

    @property
    def is_terminal(self) -> bool:
        return not self.outputs or self.produced_kind.is_terminal


class ExecutionPlan(BaseModel):
    """Ordered collection of nodes forming a DAG for one task."""

    model_config = ConfigDict(extra="forbid")

    nodes: list[Node] = Field(default_factory=list)

    def add_node(
        self,
        kind: DataKind,
        exec_param: JsonValue = None,
        *,
        node_id: str | None = None,
    ) -> Node:
        """Append a node producing ``kind``.

        Args:
            kind: Data kind the node's stage outputs
            exec_param: Opaque per-node parameter handed to the stage
            node_id: Plan-unique name; defaults to the node's index

        Raises:
            MalformedPlanError: If node_id is already used in this plan
        """
        index = len(self.nodes)
        node_id = node_id if node_id is not None else str(index)
        if any(n.node_id == node_id for n in self.nodes):
            raise MalformedPlanError(f"Duplicate node_id {node_id!r} in execution plan")
        node = Node(node_id=node_id, index=index, produced_kind=kind, exec_param=exec_param)
        self.nodes.append(node)
        return node

    def node(self, index: int) -> Node:
        """Node at ``index``.

        Raises:
            MalformedPlanError: If the index is outside the plan
        """
        if not 0 <= index < len(self.nodes):
            raise MalformedPlanError(f"Edge target {index} outside plan of {len(self.nodes)} nodes")
        return self.nodes[index]

    def destination_node(self, port: Port) -> Node:
        """Node that declared ``port``.

        Raises:
            PortUnboundError: If no node declared the port
        """
        for node in self.nodes:
            if port in node.input_ports:
                return node
        raise PortUnboundError(port)

    def claim(self, node: Node) -> bool:
        """Atomically mark ``node`` executed.

        Returns:
            True only for the call that flipped the flag; False if the node
            had already been claimed in this plan copy.
        """
        with _CLAIM_LOCK:
            if node.executed:
                return False
            node.mark_executed()
            return True

    def copy(self) -> ExecutionPlan:
        """Independent copy; executed flags of the copy never leak back."""
        return ExecutionPlan.model_validate(self.model_dump())

    def to_graph(self) -> nx.MultiDiGraph:
        """Node-index graph with one edge per output, keyed by target port."""
        graph = nx.MultiDiGraph()
        for node in self.nodes:
            graph.add_node(node.index, node_id=node.node_id, kind=node.produced_kind)
        for node in self.nodes:
            for edge in node.outputs:
                graph.add_edge(node.index, edge.target, key=str(edge.port), port=edge.port)
        return graph

    def validate_plan(self) -> None:
        """Check the planner obligations before the first envelope is emitted.

        - every edge targets a node inside the plan
        - the target node declared the edge's port
        - no port is declared by more than one node
        - an edge's port accepts the kind its source node produces
        - terminal-kind nodes have no outputs
        - the graph is acyclic

        Raises:
            MalformedPlanError: On the first violated obligation
        """
        declared = Counter(port for node in self.nodes for port in node.input_ports)
        duplicated = sorted(str(port) for port, count in declared.items() if count > 1)
        if duplicated:
            raise MalformedPlanError(f"Ports declared by more than one node: {duplicated}")

        for node in self.nodes:
            if node.produced_kind.is_terminal and node.outputs:
                raise MalformedPlanError(f"Node {node.node_id!r} produces {node.produced_kind} but has outputs")
            for edge in node.outputs:
                target = self.node(edge.target)
                if edge.port not in target.input_ports:
                    raise MalformedPlanError(f"Node {target.node_id!r} did not declare port {edge.port}")
                if edge.port.kind is not node.produced_kind:
                    raise MalformedPlanError(
                        f"Edge {node.node_id!r} -> {edge.port} carries {node.produced_kind} "
                        f"but port accepts {edge.port.kind}"
                    )

        graph = self.to_graph()
        if not nx.is_directed_acyclic_graph(graph):
            cycle = nx.find_cycle(graph)
            raise MalformedPlanError(f"Execution plan contains a cycle: {[(u, v) for u, v, *_ in cycle]}")
