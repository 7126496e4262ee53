"""
Security utilities: randomness, hashing to the field, constant-time compare,
and the permutation used to hide which transaction slots are padding.
"""

import hashlib
import hmac
import os
import random
import secrets
from typing import List, Optional, Sequence, TypeVar

from .config import FIELD_SIZE, HASH_FUNCTION

T = TypeVar("T")

_HASHES = {"SHA3-256": hashlib.sha3_256, "SHA256": hashlib.sha256}


# ============================================================================
# FIELD MODULUS VALIDATION (Run at module import)
# ============================================================================


def _validate_field_size():
    """
    Validate FIELD_SIZE is reasonable.

    Raises:
        ValueError: If FIELD_SIZE is invalid
    """
    if FIELD_SIZE <= 0:
        raise ValueError(f"Invalid FIELD_SIZE: {FIELD_SIZE}")

    if FIELD_SIZE < 2**128:
        raise ValueError(f"FIELD_SIZE too small (< 2^128): {FIELD_SIZE}")


_validate_field_size()


# ============================================================================
# RANDOMNESS
# ============================================================================


class RandomnessSource:
    """
    OS-backed randomness that reseeds itself after a fork.

    A forked child that kept its parent's generator state could hand out the
    same blindings and keys as the parent.

    Example:
        >>> blinding = RandomnessSource().get_random_field_element()
    """

    def __init__(self):
        self._reseed()

    def _reseed(self) -> None:
        self._pid = os.getpid()
        self._rng = secrets.SystemRandom()

    def _check_fork(self) -> None:
        if self._pid != os.getpid():
            self._reseed()

    def get_random_scalar(self, max_value: int) -> int:
        """Uniform integer below max_value."""
        self._check_fork()
        return self._rng.randrange(max_value)

    def get_random_bytes(self, n: int) -> bytes:
        self._check_fork()
        return secrets.token_bytes(n)

    def get_random_field_element(self) -> int:
        """Uniform non-zero field element."""
        return 1 + self.get_random_scalar(FIELD_SIZE - 1)


# ============================================================================
# PERMUTATION
# ============================================================================


def permute(items: Sequence[T], rng: Optional[random.Random] = None) -> List[T]:
    """
    Return a uniformly permuted copy of items (Fisher-Yates).

    Args:
        items: Items to permute (not modified)
        rng: Optional seeded generator; defaults to the system CSPRNG

    Returns:
        New list with the same items in permuted order

    Note:
        Pass ``random.Random(seed)`` only in tests. A predictable
        permutation reveals which transaction slots are padding.
    """
    generator = rng if rng is not None else secrets.SystemRandom()
    result = list(items)
    for current in range(len(result) - 1, 0, -1):
        other = generator.randrange(0, current + 1)
        result[current], result[other] = result[other], result[current]
    return result


# ============================================================================
# HASH FUNCTIONS
# ============================================================================


def hash_to_field(data: bytes, domain_sep: Optional[bytes] = None) -> int:
    """
    Hash data to a field element with domain separation.

    Returns:
        Scalar in [0, FIELD_SIZE)

    Security Note:
        Modulo reduction of a 256-bit digest by a 254-bit modulus leaves a
        small bias. Acceptable for binding metadata, not for key generation.
    """
    if not isinstance(data, (bytes, bytearray)) or not isinstance(domain_sep or b"", bytes):
        raise TypeError("data and domain_sep must be bytes")
    digest = _HASHES[HASH_FUNCTION]((domain_sep or b"") + bytes(data)).digest()
    return int.from_bytes(digest, "big") % FIELD_SIZE


def encode_length_prefixed(parts: Sequence[bytes]) -> bytes:
    """Concatenate parts as ``len(part) (4 bytes) || part``."""
    out = bytearray()
    for part in parts:
        if not isinstance(part, (bytes, bytearray)):
            raise TypeError("parts must be bytes")
        out.extend(len(part).to_bytes(4, "big"))
        out.extend(part)
    return bytes(out)


# ============================================================================
# COMPARISON
# ============================================================================


def constant_time_compare(a: bytes, b: bytes) -> bool:
    """Compare MACs and tags without leaking the position of the first mismatch."""
    return hmac.compare_digest(a, b)
