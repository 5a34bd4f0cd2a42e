# src/lasvpe/contracts/blob_store.py
"""BlobStore protocol for the durable bulk store.

Used for startup configuration distribution (broadcast pool) and for
spilling payloads too large for the bus. Keys are relative POSIX paths.
"""

from __future__ import annotations

from typing import BinaryIO, Protocol, runtime_checkable


@runtime_checkable
class BlobStore(Protocol):
    """Protocol for bulk-store backends keyed by path."""

    def put(self, path: str, content: bytes) -> None:
        """Store content at path, replacing anything already there."""
        ...

    def get(self, path: str) -> bytes:
        """Read the whole blob at path.

        Raises:
            BlobNotFoundError: If nothing is stored at path
        """
        ...

    def open(self, path: str) -> BinaryIO:
        """Open the blob at path for streaming reads.

        Raises:
            BlobNotFoundError: If nothing is stored at path
        """
        ...

    def exists(self, path: str) -> bool:
        """Check if a blob is stored at path."""
        ...

    def delete(self, path: str) -> bool:
        """Delete the blob at path.

        Returns:
            True if a blob was deleted, False if none existed
        """
        ...

    def list(self, prefix: str = "") -> list[str]:
        """Sorted paths of all blobs under ``prefix``."""
        ...
