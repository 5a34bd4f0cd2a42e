# src/lasvpe/engine/offload.py
"""Oversize payload offloader.

Publishes envelopes; when the bus rejects one with SizeLimitExceeded, the
payload is spilled to the bulk store at a path derived from (task_id,
node_id), replaced by a BlobReference, and the envelope is published again.

Downstream stages accept "value or reference" and call resolve() on demand.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from lasvpe.contracts.blob_store import BlobStore
from lasvpe.contracts.bus import MessageBus
from lasvpe.contracts.envelope import TaskEnvelope
from lasvpe.contracts.errors import SizeLimitExceeded
from lasvpe.contracts.payloads import BlobReference, Payload, payload_from_bytes, payload_to_bytes

slog = structlog.get_logger(__name__)


def offload_path(task_id: str, node_id: str, index: int | None = None) -> str:
    """Deterministic bulk-store path of a spilled payload.

    ``index`` distinguishes the results of a node that emitted several.
    """
    base = f"{task_id}/{node_id}"
    return base if index is None else f"{base}/{index}"


class OversizePayloadOffloader:
    """Publishes envelopes, detouring oversize payloads through the bulk store.

    Example:
        offloader = OversizePayloadOffloader(bus, store)
        sent = offloader.publish(envelope, node_id="tracking")
        if isinstance(sent.payload, BlobReference):
            ...  # payload lives at sent.payload.path
    """

    def __init__(self, bus: MessageBus, store: BlobStore) -> None:
        self._bus = bus
        self._store = store

    @property
    def store(self) -> BlobStore:
        return self._store

    def publish(self, envelope: TaskEnvelope, *, node_id: str, index: int | None = None) -> TaskEnvelope:
        """Publish one envelope; see publish_all()."""
        return self.publish_all([envelope], node_id=node_id, index=index)[0]

    def publish_all(
        self,
        envelopes: Sequence[TaskEnvelope],
        *,
        node_id: str,
        index: int | None = None,
    ) -> list[TaskEnvelope]:
        """Publish fan-out copies that carry the same payload.

        Each envelope goes to the channel of every destination port it has.
        The first SizeLimitExceeded spills the payload once; every copy that
        hits the limit then carries the same reference.

        Args:
            envelopes: Envelopes of one task sharing one payload
            node_id: Node that produced the payload (names the spill path)
            index: Position of the payload among the node's results

        Returns:
            The envelopes as actually published (reference substituted where spilled)

        Raises:
            SizeLimitExceeded: If even the envelope with a reference is too large
            TransientBusError: Propagated from the bus
        """
        reference: BlobReference | None = None
        published: list[TaskEnvelope] = []
        for envelope in envelopes:
            try:
                self._send(envelope)
            except SizeLimitExceeded as e:
                if reference is None:
                    reference = self._spill(envelope, node_id=node_id, index=index, error=e)
                envelope = envelope.with_payload(reference)
                self._send(envelope)
            published.append(envelope)
        return published

    def resolve(self, payload: Payload) -> Payload:
        """Concrete payload for a value or a reference.

        Raises:
            BlobNotFoundError: If the referenced blob is gone
            SerializationError: If the blob does not hold a payload
        """
        if not isinstance(payload, BlobReference):
            return payload
        return payload_from_bytes(self._store.get(payload.path))

    def _send(self, envelope: TaskEnvelope) -> None:
        data = envelope.serialize()
        for channel in dict.fromkeys(port.channel for port in envelope.destinations):
            self._bus.publish(channel, envelope.partition_key, data)

    def _spill(
        self,
        envelope: TaskEnvelope,
        *,
        node_id: str,
        index: int | None,
        error: SizeLimitExceeded,
    ) -> BlobReference:
        path = offload_path(envelope.task_id, node_id, index)
        data = payload_to_bytes(envelope.payload)
        self._store.put(path, data)
        slog.info(
            "payload_offloaded",
            task_id=envelope.task_id,
            node_id=node_id,
            path=path,
            payload_bytes=len(data),
            message_bytes=error.size,
            limit=error.limit,
        )
        return BlobReference(path=path, size=len(data))
