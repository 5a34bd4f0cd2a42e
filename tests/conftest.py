# tests/conftest.py
"""Shared test fixtures.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import os
from pathlib import Path

import pytest
from hypothesis import Phase, Verbosity, settings

from lasvpe.core.blob_store import FilesystemBlobStore
from lasvpe.core.bus import InMemoryBus
from lasvpe.engine.offload import OversizePayloadOffloader
from lasvpe.engine.retry import RetryConfig, RobustExecutor
from lasvpe.plugins.context import StageContext


@pytest.fixture
def blob_store(tmp_path: Path) -> FilesystemBlobStore:
    return FilesystemBlobStore(base_path=tmp_path / "blobs")


@pytest.fixture
def bus() -> InMemoryBus:
    return InMemoryBus(max_message_bytes=1_000_000)


@pytest.fixture
def offloader(bus: InMemoryBus, blob_store: FilesystemBlobStore) -> OversizePayloadOffloader:
    return OversizePayloadOffloader(bus, blob_store)


@pytest.fixture
def no_wait_executor() -> RobustExecutor:
    """Three attempts, no backoff sleeps."""
    return RobustExecutor(RetryConfig.no_wait(max_attempts=3))


@pytest.fixture
def stage_context(
    blob_store: FilesystemBlobStore,
    offloader: OversizePayloadOffloader,
    no_wait_executor: RobustExecutor,
) -> StageContext:
    return StageContext.for_store(blob_store, publisher=offloader, executor=no_wait_executor)


# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
