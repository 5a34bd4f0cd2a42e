# src/lasvpe/contracts/stage.py
"""Stage protocol: the contract every pluggable algorithm implements.

The stage runtime owns everything around the algorithm (plan bookkeeping,
retries, fan-out, oversize handling). A stage only turns one input payload
into its result.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import ClassVar, Protocol, TypeAlias, runtime_checkable

from pydantic import JsonValue

from lasvpe.contracts.payloads import Payload
from lasvpe.contracts.plan import Port

StageResult: TypeAlias = Payload | Sequence[Payload] | None
"""A single result, several results (each fanned out), or None for sinks."""


@runtime_checkable
class StageProtocol(Protocol):
    """Protocol for algorithm stages.

    Attributes:
        name: Stage name, unique within a worker
        ports: Input ports the stage consumes
        resolve_references: Whether the runtime should load offloaded
            payloads before calling process() (False = stage gets BlobReference)
    """

    name: ClassVar[str]
    ports: ClassVar[tuple[Port, ...]]
    resolve_references: ClassVar[bool]

    def process(self, exec_param: JsonValue, payload: Payload) -> StageResult:
        """Run the algorithm on one payload.

        May be invoked more than once for the same input by the retry
        wrapper; must not leave partial side effects behind on failure.

        Raises:
            TransientStageError: Retryable failure
            FatalStageError: Non-retryable failure
        """
        ...

    def on_start(self) -> None:
        """Called once when the hosting worker starts."""
        ...

    def close(self) -> None:
        """Release resources. Called once when the worker stops."""
        ...
