# src/lasvpe/contracts/bus.py
"""MessageBus protocol for the publish/subscribe transport.

The transport is an external collaborator. The substrate assumes:
- delivery is at-least-once (duplicates happen)
- records sharing a key are delivered in send order to a consumer group
- nothing is ordered across keys
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class Record:
    """One message received from the bus."""

    channel: str
    key: str
    value: bytes


@runtime_checkable
class Subscription(Protocol):
    """Ordered-per-key stream of records from a set of channels."""

    def poll(self, timeout: float = 0.0, max_records: int | None = None) -> list[Record]:
        """Return available records, waiting up to ``timeout`` seconds for the first.

        Args:
            timeout: Seconds to wait when nothing is pending (0 = don't wait)
            max_records: Upper bound on records returned (None = all pending)
        """
        ...

    def close(self) -> None:
        """Stop receiving. Idempotent."""
        ...


@runtime_checkable
class MessageBus(Protocol):
    """Protocol for bus backends."""

    @property
    def max_message_bytes(self) -> int:
        """Largest message publish() accepts."""
        ...

    def publish(self, channel: str, key: str, value: bytes) -> None:
        """Publish one message.

        Raises:
            SizeLimitExceeded: If value is larger than max_message_bytes
            TransientBusError: On retryable transport failures
        """
        ...

    def subscribe(self, channels: Iterable[str], group: str) -> Subscription:
        """Subscribe a consumer group to ``channels``.

        Each record is delivered to one subscription per group.
        """
        ...
