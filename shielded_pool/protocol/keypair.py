"""
Spending/viewing keypairs.

privkey         secret scalar held by the client
pubkey          FieldHash(privkey), placed in note commitments
encryption_key  x25519 public key derived from privkey, used to seal notes

A keypair imported from a shielded address has no privkey: it can receive
and encrypt notes but cannot decrypt them or produce nullifiers.
"""

from __future__ import annotations

from typing import Optional

from .config import ENCRYPTION_KEY_BYTES, FIELD_ELEMENT_BYTES, FIELD_SIZE
from .exceptions import DecryptionFailed, InvalidKeyFormat, MissingIndexOrKey
from .hashing import get_default_hasher
from .interfaces import EncryptionScheme, FieldHasher
from .security import RandomnessSource

_DEFAULT_SCHEME: Optional[EncryptionScheme] = None


def _default_scheme() -> EncryptionScheme:
    global _DEFAULT_SCHEME
    if _DEFAULT_SCHEME is None:
        from .codec import NaclBoxScheme

        _DEFAULT_SCHEME = NaclBoxScheme()
    return _DEFAULT_SCHEME


class Keypair:
    """
    Note-owning keypair.

    Example:
        >>> alice = Keypair()
        >>> bob_view = Keypair.from_address(Keypair().address())
        >>> ciphertext = bob_view.encrypt(b"payload")
    """

    def __init__(
        self,
        privkey: Optional[int] = None,
        *,
        hasher: Optional[FieldHasher] = None,
        scheme: Optional[EncryptionScheme] = None,
    ) -> None:
        self._hasher = hasher or get_default_hasher()
        self._scheme = scheme or _default_scheme()

        if privkey is None:
            privkey = RandomnessSource().get_random_field_element()
        if not isinstance(privkey, int) or not 0 < privkey < FIELD_SIZE:
            raise InvalidKeyFormat("privkey must be a non-zero field element")

        self.privkey: Optional[int] = privkey
        self.pubkey: int = self._hasher.hash(privkey)
        self.encryption_key: bytes = self._scheme.public_key(self._encryption_secret())

    @classmethod
    def from_address(
        cls,
        address: str,
        *,
        hasher: Optional[FieldHasher] = None,
        scheme: Optional[EncryptionScheme] = None,
    ) -> "Keypair":
        """
        Import a viewing-only keypair from a shielded address.

        Raises:
            InvalidKeyFormat: If the address is not 0x + 128 hex characters
        """
        if not isinstance(address, str):
            raise InvalidKeyFormat("address must be a string")
        body = address[2:] if address.startswith("0x") else address
        expected = 2 * (FIELD_ELEMENT_BYTES + ENCRYPTION_KEY_BYTES)
        if len(body) != expected:
            raise InvalidKeyFormat(f"address must have {expected} hex characters")
        try:
            raw = bytes.fromhex(body)
        except ValueError as exc:
            raise InvalidKeyFormat("address is not hex") from exc

        pubkey = int.from_bytes(raw[:FIELD_ELEMENT_BYTES], "big")
        if pubkey >= FIELD_SIZE:
            raise InvalidKeyFormat("pubkey is not a field element")

        keypair = cls.__new__(cls)
        keypair._hasher = hasher or get_default_hasher()
        keypair._scheme = scheme or _default_scheme()
        keypair.privkey = None
        keypair.pubkey = pubkey
        keypair.encryption_key = raw[FIELD_ELEMENT_BYTES:]
        return keypair

    @property
    def can_spend(self) -> bool:
        return self.privkey is not None

    def address(self) -> str:
        """Shielded address: 0x || pubkey (32 bytes) || encryption key (32 bytes)."""
        return (
            "0x"
            + self.pubkey.to_bytes(FIELD_ELEMENT_BYTES, "big").hex()
            + bytes(self.encryption_key).hex()
        )

    def _encryption_secret(self) -> bytes:
        if self.privkey is None:
            raise MissingIndexOrKey("viewing-only keypair has no private key")
        return self.privkey.to_bytes(FIELD_ELEMENT_BYTES, "big")

    def encrypt(self, payload: bytes) -> bytes:
        return self._scheme.encrypt(self.encryption_key, payload)

    def decrypt(self, ciphertext: bytes) -> bytes:
        """
        Raises:
            DecryptionFailed: If not sealed to this keypair, or no privkey
        """
        if self.privkey is None:
            raise DecryptionFailed("viewing-only keypair cannot decrypt")
        return self._scheme.decrypt(self._encryption_secret(), ciphertext)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Keypair):
            return NotImplemented
        return self.pubkey == other.pubkey and self.encryption_key == other.encryption_key

    def __hash__(self) -> int:
        return hash((self.pubkey, bytes(self.encryption_key)))

    def __repr__(self) -> str:
        kind = "spending" if self.can_spend else "viewing"
        return f"Keypair({kind}, pubkey={self.pubkey:#x})"

    __str__ = address
