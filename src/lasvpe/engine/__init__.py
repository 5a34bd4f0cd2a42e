# src/lasvpe/engine/__init__.py
"""Execution engine: carrying task envelopes through their plans.

- RobustExecutor: bounded retry around stage invocations (tenacity)
- OversizePayloadOffloader: spills oversize payloads to the bulk store
- StageRuntime: runs one stage for envelopes destined to its ports
- Worker: demultiplexer hosting several stages behind one subscription

Example:
    from lasvpe.core import InMemoryBus, FilesystemBlobStore, load_settings
    from lasvpe.engine import Worker

    settings = load_settings(Path("settings.yaml"))
    with Worker.from_settings(settings, bus, store, stages) as worker:
        worker.run()
"""

from lasvpe.engine.claims import ClaimStore, InMemoryClaimStore
from lasvpe.engine.offload import OversizePayloadOffloader, offload_path
from lasvpe.engine.retry import RetryConfig, RobustExecutor, is_retryable
from lasvpe.engine.runtime import StageRuntime, TaskOutcome
from lasvpe.engine.worker import Worker

__all__ = [
    "ClaimStore",
    "InMemoryClaimStore",
    "OversizePayloadOffloader",
    "RetryConfig",
    "RobustExecutor",
    "StageRuntime",
    "TaskOutcome",
    "Worker",
    "is_retryable",
    "offload_path",
]
