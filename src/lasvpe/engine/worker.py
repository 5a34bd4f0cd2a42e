# src/lasvpe/engine/worker.py
"""Worker - demultiplexer hosting several stages in one process.

Subscribes once to the union of the channels of every hosted stage's ports
and hands each envelope to the stage(s) that declared one of its destination
ports. An envelope destined to Port(S2, K) never reaches S1, even when S1
also listens on channel K.

Records are grouped by key (task_id) within a poll batch: one key's records
run sequentially, in delivery order, while different keys run concurrently
on a bounded thread pool.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from types import TracebackType
from typing import TYPE_CHECKING

import structlog

from lasvpe.contracts.bus import MessageBus, Record, Subscription
from lasvpe.contracts.envelope import TaskEnvelope
from lasvpe.contracts.errors import SerializationError, execution_error
from lasvpe.core.logging import task_context
from lasvpe.engine.claims import InMemoryClaimStore
from lasvpe.engine.offload import OversizePayloadOffloader
from lasvpe.engine.retry import RobustExecutor
from lasvpe.engine.runtime import StageRuntime, TaskOutcome

if TYPE_CHECKING:
    from lasvpe.contracts.blob_store import BlobStore
    from lasvpe.contracts.stage import StageProtocol
    from lasvpe.core.config import LasVpeSettings

logger = logging.getLogger(__name__)
slog = structlog.get_logger(__name__)


class Worker:
    """Bus consumer dispatching envelopes to colocated stage runtimes.

    Example:
        with Worker.from_settings(settings, bus, store, stages) as worker:
            worker.run()  # until worker.stop() from another thread

        # Or step by step (tests):
        with Worker(bus, runtimes, group="w1") as worker:
            outcomes = worker.run_once(timeout=0.1)
    """

    def __init__(
        self,
        bus: MessageBus,
        runtimes: Sequence[StageRuntime],
        *,
        group: str,
        name: str = "worker",
        max_workers: int = 4,
        poll_timeout: float = 0.5,
        poll_max_records: int | None = 100,
    ) -> None:
        if not runtimes:
            raise ValueError("A worker needs at least one stage")
        names = [runtime.name for runtime in runtimes]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate stage name(s) in worker {name!r}: {duplicates}")
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")

        self._bus = bus
        self._runtimes = tuple(runtimes)
        self._group = group
        self._name = name
        self._max_workers = max_workers
        self._poll_timeout = poll_timeout
        self._poll_max_records = poll_max_records

        self._subscription: Subscription | None = None
        self._pool: ThreadPoolExecutor | None = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: LasVpeSettings,
        bus: MessageBus,
        store: BlobStore,
        stages: Iterable[StageProtocol],
    ) -> Worker:
        """Build a worker whose stages share one offloader, executor and claim store.

        The consumer group is "<bus.consumer_group>.<worker.name>": replicas of
        one worker share records, different workers each see every record.
        """
        offloader = OversizePayloadOffloader(bus, store)
        executor = RobustExecutor.from_settings(settings.retry)
        claims = InMemoryClaimStore(settings.worker.claim_cache_size)
        runtimes = [StageRuntime(stage, offloader, executor=executor, claims=claims) for stage in stages]
        return cls(
            bus,
            runtimes,
            group=f"{settings.bus.consumer_group}.{settings.worker.name}",
            name=settings.worker.name,
            max_workers=settings.worker.max_workers,
            poll_timeout=settings.bus.poll_timeout_seconds,
            poll_max_records=settings.bus.poll_max_records,
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def group(self) -> str:
        return self._group

    @property
    def runtimes(self) -> tuple[StageRuntime, ...]:
        return self._runtimes

    @property
    def channels(self) -> tuple[str, ...]:
        """Union of the channels of all hosted ports, in declaration order."""
        return tuple(dict.fromkeys(port.channel for runtime in self._runtimes for port in runtime.ports))

    @property
    def started(self) -> bool:
        return self._subscription is not None

    def start(self) -> None:
        """Start stages, subscribe and create the thread pool. Idempotent."""
        with self._lock:
            if self._subscription is not None:
                return
            for runtime in self._runtimes:
                runtime.start()
            self._pool = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix=f"lasvpe-{self._name}")
            self._subscription = self._bus.subscribe(self.channels, self._group)
            self._stop_event.clear()
        slog.info(
            "worker_started",
            worker=self._name,
            group=self._group,
            stages=[runtime.name for runtime in self._runtimes],
            channels=list(self.channels),
        )

    def run_once(self, timeout: float | None = None) -> list[TaskOutcome]:
        """Poll one batch of records and handle all of it.

        Args:
            timeout: Seconds to wait for records (None = configured poll timeout)

        Returns:
            Outcomes of every stage invocation attempted, in batch order per key
        """
        subscription, pool = self._started()

        records = subscription.poll(
            timeout=self._poll_timeout if timeout is None else timeout,
            max_records=self._poll_max_records,
        )
        if not records:
            return []

        by_key: dict[str, list[Record]] = defaultdict(list)
        for record in records:
            by_key[record.key].append(record)

        futures = [pool.submit(self._handle_key, key_records) for key_records in by_key.values()]
        outcomes: list[TaskOutcome] = []
        for future in futures:
            outcomes.extend(future.result())
        return outcomes

    def _started(self) -> tuple[Subscription, ThreadPoolExecutor]:
        """Subscription and pool, starting the worker first if needed.

        Raises:
            RuntimeError: If close() ran concurrently with the start
        """
        self.start()
        with self._lock:
            subscription, pool = self._subscription, self._pool
        if subscription is None or pool is None:
            raise RuntimeError(f"Worker {self._name} was closed while starting")
        return subscription, pool

    def run(self) -> None:
        """Handle records until stop() is called."""
        self.start()
        while not self._stop_event.is_set():
            self.run_once()
        logger.info("Worker %s stopped", self._name)

    def stop(self) -> None:
        """Ask run() to return after the current batch."""
        self._stop_event.set()

    def close(self) -> None:
        """Unsubscribe, wait for in-flight tasks and close every stage."""
        self.stop()
        with self._lock:
            subscription, self._subscription = self._subscription, None
            pool, self._pool = self._pool, None
        if subscription is None:
            return
        subscription.close()
        if pool is not None:
            pool.shutdown(wait=True)
        for runtime in self._runtimes:
            runtime.close()
        slog.info("worker_closed", worker=self._name)

    def __enter__(self) -> Worker:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def dispatch(self, record: Record) -> list[TaskOutcome]:
        """Hand one record to every hosted stage declaring one of its destinations.

        Undecodable records are logged and discarded.
        """
        try:
            envelope = TaskEnvelope.deserialize(record.value)
        except SerializationError as e:
            slog.error(
                "envelope_discarded",
                worker=self._name,
                channel=record.channel,
                key=record.key,
                error=execution_error(e),
            )
            return []

        outcomes: list[TaskOutcome] = []
        matched = False
        for port in envelope.destinations:
            if port.channel != record.channel:
                continue
            for runtime in self._runtimes:
                if runtime.accepts(port):
                    matched = True
                    outcomes.append(runtime.handle(envelope, port))
        if not matched:
            slog.debug(
                "envelope_not_for_this_worker",
                worker=self._name,
                task_id=envelope.task_id,
                destinations=[str(p) for p in envelope.destinations],
            )
        return outcomes

    def _handle_key(self, records: list[Record]) -> list[TaskOutcome]:
        outcomes: list[TaskOutcome] = []
        for record in records:
            try:
                with task_context(worker=self._name, channel=record.channel, task_id=record.key):
                    outcomes.extend(self.dispatch(record))
            except Exception:
                # Runtimes never raise; anything here is a bug, still scoped to one record
                logger.exception("Unexpected error dispatching record on %s (key=%s)", record.channel, record.key)
        return outcomes
