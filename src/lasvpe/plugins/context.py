# src/lasvpe/plugins/context.py
"""Everything a stage may need from its hosting worker."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from lasvpe.core.resources import BroadcastHandle, ResourceRegistry, default_registry

if TYPE_CHECKING:
    from lasvpe.contracts.blob_store import BlobStore
    from lasvpe.engine.offload import OversizePayloadOffloader
    from lasvpe.engine.retry import RobustExecutor


@dataclass(frozen=True)
class StageContext:
    """Shared handles passed to every stage constructor.

    Attributes:
        store: Bulk store for results and stored inputs
        broadcast: Read-only configuration files distributed to all workers
        registry: Process-wide cache of expensive resources (models, clients)
        publisher: Envelope publisher, only needed by stages that start tasks
        executor: Retry wrapper for stage-internal calls (e.g. storage reads)
    """

    store: BlobStore
    broadcast: BroadcastHandle
    registry: ResourceRegistry = field(default_factory=default_registry)
    publisher: OversizePayloadOffloader | None = None
    executor: RobustExecutor | None = None

    @classmethod
    def for_store(
        cls,
        store: BlobStore,
        *,
        config_prefix: str = "conf",
        config_suffix: str = ".conf",
        publisher: OversizePayloadOffloader | None = None,
        executor: RobustExecutor | None = None,
    ) -> StageContext:
        """Context whose broadcast pool is read from ``store``."""
        return cls(
            store=store,
            broadcast=BroadcastHandle.for_store(store, config_prefix, config_suffix),
            publisher=publisher,
            executor=executor,
        )
