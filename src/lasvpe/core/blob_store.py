# src/lasvpe/core/blob_store.py
"""
Filesystem bulk store keyed by relative path.

Used for:
- Configuration files distributed to workers through the broadcast pool
- Payloads spilled out of envelopes that exceed the bus size limit

Structure: base_path/<path>, e.g. base_path/T1/tracking
"""

import os
import tempfile
from pathlib import Path, PurePosixPath
from typing import BinaryIO

from lasvpe.contracts.errors import BlobNotFoundError

__all__ = ["FilesystemBlobStore"]


class FilesystemBlobStore:
    """Filesystem-based blob store.

    Writes go to a temporary file in the target directory and are renamed
    into place, so readers never observe a partially written blob.
    """

    def __init__(self, base_path: Path) -> None:
        """Initialize filesystem store.

        Args:
            base_path: Root directory for blob storage
        """
        self.base_path = base_path
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        """Get filesystem path for a blob path.

        Raises:
            ValueError: If path is empty, absolute, or escapes base_path
        """
        relative = PurePosixPath(path)
        if not path or relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"Invalid blob path: {path!r}")

        resolved = (self.base_path / relative).resolve()
        base_resolved = self.base_path.resolve()
        if not resolved.is_relative_to(base_resolved) or resolved == base_resolved:
            raise ValueError(f"Invalid blob path: {path!r} resolves outside {base_resolved}")
        return resolved

    def put(self, path: str, content: bytes) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(content)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise BlobNotFoundError(path)
        return target.read_bytes()

    def open(self, path: str) -> BinaryIO:
        target = self._resolve(path)
        if not target.is_file():
            raise BlobNotFoundError(path)
        return target.open("rb")

    def exists(self, path: str) -> bool:
        """Check if a blob exists."""
        return self._resolve(path).is_file()

    def delete(self, path: str) -> bool:
        """Delete a blob.

        Returns:
            True if the blob was deleted, False if not found
        """
        target = self._resolve(path)
        if not target.is_file():
            return False
        target.unlink()
        return True

    def list(self, prefix: str = "") -> list[str]:
        """Sorted blob paths under ``prefix`` (a directory or a name prefix)."""
        base_resolved = self.base_path.resolve()
        found: list[str] = []
        for file in base_resolved.rglob("*"):
            if not file.is_file() or file.name.startswith("."):
                continue
            relative = file.relative_to(base_resolved).as_posix()
            if relative.startswith(prefix):
                found.append(relative)
        return sorted(found)
