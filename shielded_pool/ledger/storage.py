"""
Key-value storage backend for the ledger.

Keys are namespaced by a short prefix; integer parts are fixed-width
big-endian so prefix iteration returns them in numeric order:

    c:<index u64>      commitment record (commitment, encrypted output)
    n:<nullifier>      spent marker
    e:<seq u64>        nullifier event order
    r:<seq u64>        accepted root
    a:<owner>          registered shielded address
    b:<message id>     processed bridge message
    o:<seq u64>        outbox payout
    m:<name>           metadata (pool balance, limits, counters)

All ledger mutations go through a WriteBatch, which is applied atomically
on exit or discarded if an exception escapes.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional, Tuple

COMMITMENTS = b"c:"
NULLIFIERS = b"n:"
NULLIFIER_EVENTS = b"e:"
ROOTS = b"r:"
ACCOUNTS = b"a:"
BRIDGE_MESSAGES = b"b:"
OUTBOX = b"o:"
META = b"m:"


def be_u64(n: int) -> bytes:
    if not (0 <= n < (1 << 64)):
        raise ValueError("be_u64 out of range")
    return n.to_bytes(8, "big")


class WriteBatch:
    """
    Buffered puts/deletes applied in one step.

    Example:
        >>> with store.batch() as b:
        ...     b.put(b"n:" + nullifier, b"\\x01")
        ...     b.delete(b"o:" + seq)
    """

    def __init__(self, store: "KeyValueStore") -> None:
        self._store = store
        self._ops: List[Tuple[bytes, Optional[bytes]]] = []
        self._open = False

    def __enter__(self) -> "WriteBatch":
        if self._open:
            raise RuntimeError("batch already open")
        self._open = True
        return self

    def put(self, k: bytes, value: bytes) -> None:
        if not self._open:
            raise RuntimeError("batch not open")
        self._ops.append((bytes(k), bytes(value)))

    def delete(self, k: bytes) -> None:
        if not self._open:
            raise RuntimeError("batch not open")
        self._ops.append((bytes(k), None))

    def commit(self) -> None:
        if not self._open:
            return
        self._store._apply(self._ops)
        self._ops = []
        self._open = False

    def rollback(self) -> None:
        self._ops = []
        self._open = False

    def __exit__(self, et, ev, tb):
        if et is None:
            self.commit()
        else:
            self.rollback()
        return None


class KeyValueStore(ABC):
    """Byte-keyed store with prefix scans and atomic write batches."""

    @abstractmethod
    def get(self, k: bytes) -> Optional[bytes]:
        ...

    def has(self, k: bytes) -> bool:
        return self.get(k) is not None

    @abstractmethod
    def iter_prefix(self, prefix: bytes) -> Iterator[Tuple[bytes, bytes]]:
        """Yield (key, value) pairs starting with prefix in key order."""

    @abstractmethod
    def _apply(self, ops: List[Tuple[bytes, Optional[bytes]]]) -> None:
        """Apply all ops or none of them."""

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def close(self) -> None:
        return None


class InMemoryStore(KeyValueStore):
    """dict-backed store; a batch is applied under one lock acquisition."""

    def __init__(self) -> None:
        self._data: Dict[bytes, bytes] = {}
        self._lock = threading.RLock()

    def get(self, k: bytes) -> Optional[bytes]:
        with self._lock:
            return self._data.get(bytes(k))

    def iter_prefix(self, prefix: bytes) -> Iterator[Tuple[bytes, bytes]]:
        with self._lock:
            items = sorted(
                (k, v) for k, v in self._data.items() if k.startswith(prefix)
            )
        return iter(items)

    def _apply(self, ops: List[Tuple[bytes, Optional[bytes]]]) -> None:
        with self._lock:
            for k, value in ops:
                if value is None:
                    self._data.pop(k, None)
                else:
                    self._data[k] = value

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
