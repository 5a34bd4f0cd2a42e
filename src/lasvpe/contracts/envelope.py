# src/lasvpe/contracts/envelope.py
"""Task envelope: the message unit carrying one task through its plan.

Wire format (UTF-8 JSON, self-describing):
    {
        "task_id": "...",
        "plan": {"nodes": [...]},
        "destinations": [{"stage": "...", "kind": "..."}],
        "payload": {"kind": "...", ...},
        "tag": "..." | null,
        "derivation": "..."
    }

``derivation`` names the path of results that produced an envelope inside its
task (empty for the initial envelope). It is part of the wire bytes, so a
redelivered envelope keeps it while two different results bound for the same
node differ in it.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from lasvpe.contracts.errors import SerializationError
from lasvpe.contracts.payloads import Payload
from lasvpe.contracts.plan import BoundPort, ExecutionPlan, Node, Port


def new_task_id() -> str:
    """Generate a globally unique task identifier."""
    return str(uuid.uuid4())


def derived_task_id(parent: str, name: str) -> str:
    """Task id that is the same every time ``parent`` starts ``name``.

    Lets a retried submission republish its tasks under their first ids.
    """
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"lasvpe:{parent}/{name}"))


class TaskEnvelope(BaseModel):
    """One task's plan, current position(s), payload and free-form tag.

    The plan is a private per-task copy: executed flags never leak across
    tasks. Envelopes derived for fan-out each get their own copy too.
    """

    model_config = ConfigDict(extra="forbid", ser_json_bytes="base64", val_json_bytes="base64")

    task_id: str = Field(min_length=1)
    plan: ExecutionPlan
    destinations: list[Port] = Field(min_length=1)
    payload: Payload
    tag: str | None = None
    derivation: str = ""

    @classmethod
    def create(
        cls,
        plan: ExecutionPlan,
        destinations: Sequence[Port | BoundPort],
        payload: Payload,
        *,
        tag: str | None = None,
        task_id: str | None = None,
    ) -> TaskEnvelope:
        """Build the initial envelope of a task from a planner's plan.

        The plan is copied, so one plan object can seed many tasks.

        Raises:
            PortUnboundError: If a destination port is not declared in the plan
        """
        plan_copy = plan.copy()
        ports = [d.port if isinstance(d, BoundPort) else d for d in destinations]
        for port in ports:
            plan_copy.destination_node(port)
        return cls(
            task_id=task_id or new_task_id(),
            plan=plan_copy,
            destinations=ports,
            payload=payload,
            tag=tag,
        )

    @property
    def partition_key(self) -> str:
        """Bus key: all envelopes of one task share a partition."""
        return self.task_id

    def destination_node(self, port: Port) -> Node:
        """Node in this envelope's plan that declared ``port``."""
        return self.plan.destination_node(port)

    def change_current_node(self, port: Port) -> None:
        """Re-target this envelope to ``port``, replacing all destinations.

        Raises:
            PortUnboundError: If no node in the plan declared the port
        """
        self.plan.destination_node(port)
        self.destinations = [port]

    def derive(self, port: Port, payload: Payload, *, step: str | None = None) -> TaskEnvelope:
        """Fan-out copy targeting ``port`` and carrying ``payload``.

        Shares task_id and tag; gets its own copy of the current plan.
        ``step`` (e.g. "tracking/2/0": node, result index, edge index) is
        appended to the derivation; without it the derivation is kept.

        Raises:
            PortUnboundError: If no node in the plan declared the port
        """
        derived = TaskEnvelope(
            task_id=self.task_id,
            plan=self.plan.copy(),
            destinations=[port],
            payload=payload,
            tag=self.tag,
            derivation=self.derivation if step is None else "/".join(filter(None, (self.derivation, step))),
        )
        derived.plan.destination_node(port)
        return derived

    def with_payload(self, payload: Payload) -> TaskEnvelope:
        """Same destinations and plan copy, different payload."""
        return self.model_copy(
            update={"payload": payload, "plan": self.plan.copy(), "destinations": list(self.destinations)},
        )

    def serialize(self) -> bytes:
        """Encode to wire bytes."""
        try:
            return self.model_dump_json().encode("utf-8")
        except ValueError as e:
            raise SerializationError(f"Cannot encode envelope of task {self.task_id}: {e}") from e

    @classmethod
    def deserialize(cls, data: bytes) -> TaskEnvelope:
        """Decode wire bytes produced by serialize().

        Raises:
            SerializationError: If the bytes are not a valid envelope
        """
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise SerializationError(f"Cannot decode envelope: {e.error_count()} validation error(s)") from e
