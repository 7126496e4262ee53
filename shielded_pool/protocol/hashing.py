"""
Field hash used for commitments, nullifiers, public keys and tree nodes.

The default implementation is SHA3-256 over fixed-width, domain-separated
field elements, reduced modulo the scalar field. Circuits that need an
arithmetization-friendly permutation (e.g. Poseidon) plug in their own
FieldHasher; nothing else in the protocol depends on the permutation.
"""

from __future__ import annotations

import hashlib
import threading
from typing import Optional

from .config import DOMAIN_SEPARATORS, FIELD_ELEMENT_BYTES, FIELD_SIZE
from .interfaces import FieldHasher


def to_field_bytes(value: int) -> bytes:
    """Encode a field element as FIELD_ELEMENT_BYTES big-endian bytes."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"field element must be int, got {type(value)}")
    if value < 0 or value >= FIELD_SIZE:
        raise ValueError("field element out of range")
    return value.to_bytes(FIELD_ELEMENT_BYTES, "big")


def from_field_bytes(data: bytes) -> int:
    """Decode FIELD_ELEMENT_BYTES big-endian bytes into a field element."""
    if len(data) != FIELD_ELEMENT_BYTES:
        raise ValueError(f"expected {FIELD_ELEMENT_BYTES} bytes, got {len(data)}")
    value = int.from_bytes(data, "big")
    if value >= FIELD_SIZE:
        raise ValueError("field element out of range")
    return value


def to_field(value: int) -> int:
    """Fold a signed integer into the field (negative wraps around)."""
    return value % FIELD_SIZE


class Sha3FieldHash(FieldHasher):
    """
    SHA3-256 field hash.

    H(x_1, ..., x_n) = SHA3-256(domain || n || x_1 || ... || x_n) mod p,
    each x_i encoded as 32 big-endian bytes. Including the arity keeps
    H(a) and H(a, 0) distinct.
    """

    def __init__(self, domain_sep: bytes = DOMAIN_SEPARATORS["field_hash"]) -> None:
        self._domain_sep = domain_sep

    @property
    def name(self) -> str:
        return "sha3-256-field"

    def hash(self, *elements: int) -> int:
        if not elements:
            raise ValueError("at least one element is required")
        h = hashlib.sha3_256()
        h.update(self._domain_sep)
        h.update(len(elements).to_bytes(1, "big"))
        for element in elements:
            h.update(to_field_bytes(element))
        return int.from_bytes(h.digest(), "big") % FIELD_SIZE


# ============================================================================
# DEFAULT HASHER CACHE
# ============================================================================

_DEFAULT_HASHER: Optional[FieldHasher] = None
_CACHE_LOCK = threading.Lock()


def get_default_hasher() -> FieldHasher:
    """
    Get the process-wide default field hasher (initialize if needed).

    Thread-safe using double-checked locking.
    """
    global _DEFAULT_HASHER

    if _DEFAULT_HASHER is not None:
        return _DEFAULT_HASHER

    with _CACHE_LOCK:
        if _DEFAULT_HASHER is None:
            _DEFAULT_HASHER = Sha3FieldHash()
        return _DEFAULT_HASHER
