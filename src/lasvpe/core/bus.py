# src/lasvpe/core/bus.py
"""In-process publish/subscribe bus.

Each channel is an append-only log; each consumer group keeps its own read
offset per channel. Subscriptions sharing a group share offsets, so a record
goes to exactly one subscription of a group and to every group. Records on
one channel are delivered in publish order, which preserves per-key order.

Used by tests and single-process deployments. A networked bus implements the
same MessageBus protocol.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable

from lasvpe.contracts.bus import Record
from lasvpe.contracts.errors import SizeLimitExceeded

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGE_BYTES = 1_000_000


class InMemorySubscription:
    """A consumer group's view of a set of channels."""

    def __init__(self, bus: InMemoryBus, channels: tuple[str, ...], group: str) -> None:
        self._bus = bus
        self.channels = channels
        self.group = group
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def poll(self, timeout: float = 0.0, max_records: int | None = None) -> list[Record]:
        """Return pending records, waiting up to ``timeout`` seconds for some.

        Raises:
            RuntimeError: If the subscription was closed
        """
        if self._closed:
            raise RuntimeError(f"Subscription of group {self.group!r} is closed")
        return self._bus._poll(self, timeout, max_records)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._bus._wake()

    def __enter__(self) -> InMemorySubscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class InMemoryBus:
    """Thread-safe bus with a maximum message size.

    Example:
        bus = InMemoryBus(max_message_bytes=1_000_000)
        sub = bus.subscribe(["lasvpe.tracklet"], group="workers")
        bus.publish("lasvpe.tracklet", "T1", b"...")
        records = sub.poll(timeout=0.1)
    """

    def __init__(self, max_message_bytes: int = DEFAULT_MAX_MESSAGE_BYTES) -> None:
        if max_message_bytes <= 0:
            raise ValueError(f"max_message_bytes must be positive, got {max_message_bytes}")
        self._max_message_bytes = max_message_bytes
        self._logs: dict[str, list[Record]] = {}
        self._offsets: dict[tuple[str, str], int] = {}
        self._cond = threading.Condition()

    @property
    def max_message_bytes(self) -> int:
        return self._max_message_bytes

    def publish(self, channel: str, key: str, value: bytes) -> None:
        """Append a record to ``channel``.

        Raises:
            SizeLimitExceeded: If value is larger than max_message_bytes
        """
        if len(value) > self._max_message_bytes:
            raise SizeLimitExceeded(len(value), self._max_message_bytes)
        with self._cond:
            self._logs.setdefault(channel, []).append(Record(channel=channel, key=key, value=value))
            self._cond.notify_all()
        logger.debug("Published %d bytes to %s (key=%s)", len(value), channel, key)

    def subscribe(self, channels: Iterable[str], group: str) -> InMemorySubscription:
        """Subscribe ``group`` to ``channels``.

        A group joining a channel for the first time reads it from the start.
        """
        channel_tuple = tuple(dict.fromkeys(channels))
        if not channel_tuple:
            raise ValueError("Cannot subscribe to an empty set of channels")
        with self._cond:
            for channel in channel_tuple:
                self._offsets.setdefault((group, channel), 0)
        return InMemorySubscription(self, channel_tuple, group)

    def redeliver(self, group: str, channel: str, offset: int = 0) -> None:
        """Rewind ``group`` on ``channel`` so records from ``offset`` arrive again.

        Simulates the duplicates an at-least-once transport produces after a
        consumer restarts without committing.
        """
        with self._cond:
            log_length = len(self._logs.get(channel, []))
            if not 0 <= offset <= log_length:
                raise ValueError(f"Offset {offset} outside channel {channel!r} of {log_length} records")
            self._offsets[(group, channel)] = offset
            self._cond.notify_all()

    def published(self, channel: str) -> list[Record]:
        """Snapshot of every record ever published to ``channel``."""
        with self._cond:
            return list(self._logs.get(channel, []))

    def pending(self, group: str) -> int:
        """Records not yet delivered to ``group`` across its channels."""
        with self._cond:
            return sum(
                len(self._logs.get(channel, [])) - offset
                for (member, channel), offset in self._offsets.items()
                if member == group
            )

    def _drain(self, sub: InMemorySubscription, max_records: int | None) -> list[Record]:
        records: list[Record] = []
        for channel in sub.channels:
            log = self._logs.get(channel, [])
            offset = self._offsets[(sub.group, channel)]
            if offset >= len(log):
                continue
            end = len(log)
            if max_records is not None:
                end = min(end, offset + max_records - len(records))
            records.extend(log[offset:end])
            self._offsets[(sub.group, channel)] = end
            if max_records is not None and len(records) >= max_records:
                break
        return records

    def _poll(self, sub: InMemorySubscription, timeout: float, max_records: int | None) -> list[Record]:
        if max_records is not None and max_records <= 0:
            raise ValueError(f"max_records must be positive, got {max_records}")
        deadline = time.monotonic() + max(timeout, 0.0)
        with self._cond:
            while True:
                records = self._drain(sub, max_records)
                if records or sub.closed:
                    return records
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return []
                self._cond.wait(remaining)

    def _wake(self) -> None:
        with self._cond:
            self._cond.notify_all()
