# src/lasvpe/engine/runtime.py
"""StageRuntime - connects one algorithm stage to the bus.

For an envelope destined to one of the stage's ports:
1. Resolve the node that declared the port
2. Claim the node (claim store, then the plan copy's executed flag)
3. Resolve an offloaded payload if the stage wants values
4. Run stage.process() through the RobustExecutor
5. Derive one envelope per output edge and publish via the offloader

Every failure is scoped to its task: it is logged and the task is dropped.
Nothing raised by a stage or the bus escapes handle().
"""

import time
from collections.abc import Sequence
from enum import StrEnum

import structlog

from lasvpe.contracts.envelope import TaskEnvelope
from lasvpe.contracts.errors import FatalStageError, MalformedPlanError, execution_error
from lasvpe.contracts.payloads import BlobReference, Payload
from lasvpe.contracts.plan import Node, Port
from lasvpe.contracts.stage import StageProtocol, StageResult
from lasvpe.engine.claims import ClaimStore
from lasvpe.engine.offload import OversizePayloadOffloader
from lasvpe.engine.retry import RobustExecutor

slog = structlog.get_logger(__name__)


class TaskOutcome(StrEnum):
    """What handling one envelope did to its task."""

    FORWARDED = "forwarded"  # Results published to every output edge
    COMPLETED = "completed"  # Terminal node ran; the branch ends here
    DUPLICATE = "duplicate"  # Node already claimed; nothing ran
    DROPPED = "dropped"  # Failure; the task was logged and dropped


def _as_results(result: StageResult) -> list[Payload]:
    if result is None:
        return []
    if isinstance(result, Sequence):
        return list(result)
    return [result]


class StageRuntime:
    """Adapter between the bus and one algorithm stage.

    Example:
        runtime = StageRuntime(tracker, offloader, executor=RobustExecutor.from_settings(settings.retry))
        runtime.start()
        outcome = runtime.handle(envelope, port)
        runtime.close()
    """

    def __init__(
        self,
        stage: StageProtocol,
        offloader: OversizePayloadOffloader,
        *,
        executor: RobustExecutor | None = None,
        claims: ClaimStore | None = None,
    ) -> None:
        self._stage = stage
        self._offloader = offloader
        self._executor = executor or RobustExecutor()
        self._claims = claims

    @property
    def stage(self) -> StageProtocol:
        return self._stage

    @property
    def name(self) -> str:
        return self._stage.name

    @property
    def ports(self) -> tuple[Port, ...]:
        return self._stage.ports

    def accepts(self, port: Port) -> bool:
        return port in self._stage.ports

    def start(self) -> None:
        self._stage.on_start()

    def close(self) -> None:
        self._stage.close()

    def handle(self, envelope: TaskEnvelope, port: Port) -> TaskOutcome:
        """Process one envelope arriving at ``port``.

        Args:
            envelope: Received envelope (its plan copy is mutated by the claim)
            port: The destination of the envelope this stage consumes

        Returns:
            What happened to the task
        """
        log = slog.bind(task_id=envelope.task_id, stage=self.name, port=str(port))

        if not self.accepts(port):
            log.error("task_dropped_foreign_port", declared=[str(p) for p in self.ports])
            return TaskOutcome.DROPPED

        try:
            node = envelope.destination_node(port)
        except MalformedPlanError as e:
            log.error("task_dropped_malformed_plan", error=execution_error(e))
            return TaskOutcome.DROPPED

        log = log.bind(node_id=node.node_id, derivation=envelope.derivation)

        # Claim before running: a redelivered or concurrently dispatched copy
        # of this envelope must not re-trigger the node.
        if self._claims is not None and not self._claims.claim(envelope.task_id, node.node_id, envelope.derivation):
            log.debug("duplicate_delivery_skipped")
            return TaskOutcome.DUPLICATE
        if not envelope.plan.claim(node):
            log.debug("node_already_executed")
            return TaskOutcome.DUPLICATE

        start = time.perf_counter()
        try:
            results = self._run(envelope, node, log)
        except Exception as e:
            log.error(
                "task_dropped_stage_failed",
                error=execution_error(e),
                fatal=isinstance(e, FatalStageError),
                exc_info=not isinstance(e, FatalStageError),
            )
            return TaskOutcome.DROPPED
        duration_ms = (time.perf_counter() - start) * 1000

        if node.is_terminal:
            log.debug("node_completed", duration_ms=duration_ms, result_count=len(results))
            return TaskOutcome.COMPLETED

        try:
            self._fan_out(envelope, node, results)
        except Exception as e:
            log.error("task_dropped_publish_failed", error=execution_error(e), exc_info=True)
            return TaskOutcome.DROPPED

        log.debug(
            "node_forwarded",
            duration_ms=duration_ms,
            result_count=len(results),
            edge_count=len(node.outputs),
        )
        return TaskOutcome.FORWARDED

    def _run(self, envelope: TaskEnvelope, node: Node, log: structlog.stdlib.BoundLogger) -> list[Payload]:
        payload = envelope.payload
        if self._stage.resolve_references and isinstance(payload, BlobReference):
            payload = self._offloader.resolve(payload)

        def on_retry(attempt: int, error: BaseException) -> None:
            log.warning("stage_attempt_failed", attempt=attempt, error=execution_error(error))

        results = _as_results(self._executor.execute(self._stage.process, node.exec_param, payload, on_retry=on_retry))

        for result in results:
            kind = type(result).data_kind
            if kind is not None and kind is not node.produced_kind:
                raise FatalStageError(
                    f"Stage {self.name!r} returned {kind} but node {node.node_id!r} produces {node.produced_kind}"
                )
        return results

    def _fan_out(self, envelope: TaskEnvelope, node: Node, results: list[Payload]) -> None:
        indexed = len(results) > 1
        for i, result in enumerate(results):
            derived = [
                envelope.derive(edge.port, result, step=f"{node.node_id}/{i}/{j}")
                for j, edge in enumerate(node.outputs)
            ]
            self._offloader.publish_all(derived, node_id=node.node_id, index=i if indexed else None)
