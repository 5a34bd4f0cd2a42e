# src/lasvpe/contracts/errors.py
"""Error taxonomy and structured error payloads.

Handling policy (enforced by the stage runtime, never by library code):
- MalformedPlanError / FatalStageError: logged, the single task is dropped
- TransientStageError: retried by RobustExecutor, then treated as fatal
- SizeLimitExceeded: triggers the oversize offload path
- SerializationError on receive: logged, envelope discarded
"""

from __future__ import annotations

from typing import TYPE_CHECKING, NotRequired, TypedDict

if TYPE_CHECKING:
    from lasvpe.contracts.plan import Port


class ExecutionError(TypedDict):
    """Schema for error payloads attached to structured log events."""

    exception: str  # String representation of the exception
    type: str  # Exception class name (e.g., "ValueError")
    attempts: NotRequired[int]  # Attempts made before giving up


def execution_error(error: BaseException, *, attempts: int | None = None) -> ExecutionError:
    """Build an ExecutionError payload from an exception."""
    payload: ExecutionError = {"exception": str(error), "type": type(error).__name__}
    if attempts is not None:
        payload["attempts"] = attempts
    return payload


class LasVpeError(Exception):
    """Base class for all errors raised by the pipeline substrate."""


# =============================================================================
# Plan errors
# =============================================================================


class MalformedPlanError(LasVpeError):
    """Raised when an execution plan is not well formed.

    Planners must produce acyclic plans where every referenced port is
    declared exactly once. Violations found at runtime drop the task.
    """


class PortUnboundError(MalformedPlanError):
    """Raised when no node in the plan declared the requested port."""

    def __init__(self, port: Port) -> None:
        self.port = port
        super().__init__(f"No node in the execution plan declared port {port}")


# =============================================================================
# Transport errors
# =============================================================================


class SizeLimitExceeded(LasVpeError):
    """Raised by a bus when a message exceeds its maximum size.

    Attributes:
        size: Size of the rejected message in bytes
        limit: Maximum message size accepted by the bus
    """

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(f"Message of {size} bytes exceeds bus limit of {limit} bytes")


class TransientBusError(LasVpeError):
    """Raised by a bus on a retryable publish failure."""


class SerializationError(LasVpeError):
    """Raised when an envelope or payload cannot be encoded or decoded."""


class BlobNotFoundError(LasVpeError, KeyError):
    """Raised when the bulk store has nothing at the requested path."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Blob not found: {path}")

    def __str__(self) -> str:
        return f"Blob not found: {self.path}"


# =============================================================================
# Stage errors
# =============================================================================


class StageError(LasVpeError):
    """Base class for failures reported by an algorithm stage."""


class TransientStageError(StageError):
    """Retryable stage failure (e.g. a storage read timed out)."""


class FatalStageError(StageError):
    """Non-retryable stage failure (e.g. missing configuration)."""


# =============================================================================
# Planner errors
# =============================================================================


class UnsupportedCommandError(LasVpeError):
    """Raised when the planner receives a command it cannot plan."""

    def __init__(self, command: str) -> None:
        self.command = command
        super().__init__(f"Unsupported command: {command!r}")
