# src/lasvpe/engine/claims.py
"""Claim store: remembers which deliveries a worker already ran.

Every envelope carries its own plan copy, so a redelivered envelope arrives
with ``executed`` still false. The claim store is what turns the per-copy
claim into at-most-once per node across deliveries to this worker.

A delivery is identified by (task_id, derivation, node_id). The derivation
is carried on the wire, so a redelivered copy claims the same key, while the
several results one node emits toward the same downstream node each get
their own.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Protocol


class ClaimStore(Protocol):
    """Protocol for claim stores (in-memory here, shared stores elsewhere)."""

    def claim(self, task_id: str, node_id: str, derivation: str = "") -> bool:
        """Return True exactly once per (task_id, derivation, node_id)."""
        ...


class InMemoryClaimStore:
    """Bounded, thread-safe claim store.

    Keeps the ``capacity`` most recent claims; older ones are forgotten, which
    re-opens a (very late) duplicate to execution.
    """

    def __init__(self, capacity: int = 100_000) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._claims: OrderedDict[tuple[str, str, str], None] = OrderedDict()
        self._lock = threading.Lock()

    def claim(self, task_id: str, node_id: str, derivation: str = "") -> bool:
        key = (task_id, derivation, node_id)
        with self._lock:
            if key in self._claims:
                self._claims.move_to_end(key)
                return False
            self._claims[key] = None
            if len(self._claims) > self._capacity:
                self._claims.popitem(last=False)
            return True

    def is_claimed(self, task_id: str, node_id: str, derivation: str = "") -> bool:
        with self._lock:
            return (task_id, derivation, node_id) in self._claims

    def __len__(self) -> int:
        with self._lock:
            return len(self._claims)
