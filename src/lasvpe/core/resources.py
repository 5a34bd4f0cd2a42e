# src/lasvpe/core/resources.py
"""Process-local and cluster-wide shared resources.

Singleton: lazily built, cached per worker process. For resources that are
expensive or cannot be shipped between processes (bus producers, loaded
models, storage clients).

BroadcastPool: built once from the bulk store and handed to every worker as a
read-only mapping (small configuration files keyed by name).

Both are write-once-then-read-many. Only first construction takes a lock.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable, Iterator, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Generic, TypeVar, cast

if TYPE_CHECKING:
    from lasvpe.contracts.blob_store import BlobStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Singleton(Generic[T]):
    """Lazy-once container around a factory.

    Concurrent first calls to get_inst() run the factory exactly once; every
    caller receives the same instance. If the factory raises, nothing is
    cached and the next call tries again.

    Example:
        producer = Singleton(lambda: KafkaProducer(**props))
        producer.get_inst().send(...)
    """

    def __init__(self, factory: Callable[[], T]) -> None:
        self._factory = factory
        self._instance: T | None = None
        self._initialized = False
        self._lock = threading.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def get_inst(self) -> T:
        """Return the cached instance, constructing it on first use."""
        if not self._initialized:
            with self._lock:
                if not self._initialized:
                    self._instance = self._factory()
                    self._initialized = True
        return cast(T, self._instance)

    def reset(self) -> T | None:
        """Forget the cached instance so the next get_inst() rebuilds it.

        Returns:
            The instance that was cached, or None if there was none
        """
        with self._lock:
            previous = self._instance if self._initialized else None
            self._instance = None
            self._initialized = False
            return previous


class ResourceRegistry:
    """Keyed singletons shared by everything in one worker process.

    Construction of one key never blocks lookups of another: the registry
    lock only guards the key -> Singleton map.

    Example:
        registry = ResourceRegistry()
        store = registry.get_or_create("blob-store", lambda: FilesystemBlobStore(path))

        # On shutdown
        registry.close_all()
    """

    def __init__(self) -> None:
        self._entries: dict[Hashable, Singleton[Any]] = {}
        self._lock = threading.Lock()

    def get_or_create(self, key: Hashable, factory: Callable[[], T]) -> T:
        """Get the resource under ``key``, building it with ``factory`` if absent.

        The factory of the first caller wins; later factories are ignored.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = Singleton(factory)
                self._entries[key] = entry
        return cast(T, entry.get_inst())

    def __contains__(self, key: object) -> bool:
        with self._lock:
            entry = self._entries.get(key)  # type: ignore[arg-type]
            return entry is not None and entry.is_initialized

    def close_all(self) -> None:
        """Close every built resource that has a close() method and clear the registry."""
        with self._lock:
            entries = list(self._entries.items())
            self._entries.clear()
        for key, entry in entries:
            instance = entry.reset()
            close = getattr(instance, "close", None)
            if callable(close):
                logger.debug("Closing shared resource %r", key)
                close()


_default_registry = ResourceRegistry()


def default_registry() -> ResourceRegistry:
    """The process-wide registry used by workers."""
    return _default_registry


class BroadcastPool(Mapping[str, bytes]):
    """Immutable name -> bytes map of configuration files.

    Built once by a coordinator with build(); workers only read it.
    """

    def __init__(self, entries: Mapping[str, bytes]) -> None:
        self._entries = MappingProxyType(dict(entries))

    @classmethod
    def build(cls, store: BlobStore, prefix: str = "conf", suffix: str = ".conf") -> BroadcastPool:
        """Read every ``*suffix`` blob under directory ``prefix``.

        Keys are paths relative to the prefix, so a flat directory is keyed
        by file name.
        """
        directory = f"{prefix.strip('/')}/" if prefix.strip("/") else ""
        entries = {
            path[len(directory) :]: store.get(path) for path in store.list(directory) if path.endswith(suffix)
        }
        logger.info("Built broadcast pool of %d file(s) from %r", len(entries), directory or "/")
        return cls(entries)

    @property
    def entries(self) -> MappingProxyType[str, bytes]:
        return self._entries

    def text(self, name: str, encoding: str = "utf-8") -> str:
        """Decoded content of one file.

        Raises:
            KeyError: If the pool has no such file
        """
        return self._entries[name].decode(encoding)

    def __getitem__(self, name: str) -> bytes:
        return self._entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"BroadcastPool({sorted(self._entries)!r})"


class BroadcastHandle:
    """Single-flight holder through which workers reach the broadcast pool.

    The pool is built on first get() and reused until invalidate().
    """

    def __init__(self, builder: Callable[[], BroadcastPool]) -> None:
        self._holder: Singleton[BroadcastPool] = Singleton(builder)

    @classmethod
    def for_store(cls, store: BlobStore, prefix: str = "conf", suffix: str = ".conf") -> BroadcastHandle:
        return cls(lambda: BroadcastPool.build(store, prefix, suffix))

    def get(self) -> BroadcastPool:
        return self._holder.get_inst()

    def invalidate(self) -> None:
        """Drop the current pool; the next get() rebuilds it."""
        self._holder.reset()
