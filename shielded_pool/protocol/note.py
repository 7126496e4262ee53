"""
Notes (UTXOs).

commitment = H(amount, pubkey, blinding)
nullifier  = H(commitment, index, privkey)

A zero-amount note is a padding placeholder. It hashes exactly like a funded
note, and its nullifier uses 0 for a missing index or privkey.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .codec import pack_note_payload, unpack_note_payload
from .config import FIELD_SIZE, MAX_AMOUNT_BITS
from .exceptions import DecryptionFailed, MissingIndexOrKey, MissingPubkey
from .hashing import get_default_hasher
from .interfaces import FieldHasher
from .keypair import Keypair
from .security import RandomnessSource

_rng = RandomnessSource()


@dataclass(eq=False)
class Note:
    """
    Shielded note.

    Attributes:
        amount: Value held, 0 <= amount < 2^248
        keypair: Owner keypair (viewing-only is enough to create or receive)
        blinding: Fresh random scalar; drawn automatically when omitted
        index: Leaf position, known once the commitment is accepted
    """

    amount: int
    keypair: Optional[Keypair] = None
    blinding: Optional[int] = None
    index: Optional[int] = None
    hasher: FieldHasher = field(default_factory=get_default_hasher, repr=False)

    _commitment: Optional[int] = field(default=None, init=False, repr=False)
    _nullifier: Optional[int] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise TypeError("amount must be an int")
        if not 0 <= self.amount < 2**MAX_AMOUNT_BITS:
            raise ValueError(f"amount must be in [0, 2^{MAX_AMOUNT_BITS})")
        if self.keypair is None:
            if self.amount > 0:
                raise MissingPubkey("funded note needs an owner")
            self.keypair = Keypair(hasher=self.hasher)
        if self.blinding is None:
            self.blinding = _rng.get_random_field_element()
        if not 0 <= self.blinding < FIELD_SIZE:
            raise ValueError("blinding must be a field element")
        if self.index is not None and self.index < 0:
            raise ValueError("index must be non-negative")

    @classmethod
    def zero(cls, keypair: Optional[Keypair] = None, **kwargs) -> "Note":
        """Padding note owned by keypair (or a throwaway keypair)."""
        return cls(amount=0, keypair=keypair, **kwargs)

    @property
    def pubkey(self) -> int:
        return self.keypair.pubkey

    @property
    def is_padding(self) -> bool:
        return self.amount == 0

    def commitment(self) -> int:
        if self._commitment is None:
            self._commitment = self.hasher.hash(self.amount, self.pubkey, self.blinding)
        return self._commitment

    def nullifier(self) -> int:
        """
        Raises:
            MissingIndexOrKey: If amount > 0 and the index or privkey is unknown
        """
        if self._nullifier is None:
            privkey = self.keypair.privkey
            if self.amount > 0 and (self.index is None or privkey is None):
                raise MissingIndexOrKey(
                    "nullifier needs the note's tree index and the owner's privkey"
                )
            self._nullifier = self.hasher.hash(
                self.commitment(), self.index or 0, privkey or 0
            )
        return self._nullifier

    def with_index(self, index: int) -> "Note":
        """Copy of this note placed at index."""
        return Note(
            amount=self.amount,
            keypair=self.keypair,
            blinding=self.blinding,
            index=index,
            hasher=self.hasher,
        )

    # ========================================================================
    # ENCRYPTION
    # ========================================================================

    def encrypt(self) -> bytes:
        """Seal (amount, blinding) to the owner's encryption key."""
        return self.keypair.encrypt(pack_note_payload(self.amount, self.blinding))

    @classmethod
    def decrypt(
        cls,
        keypair: Keypair,
        data: bytes,
        index: Optional[int] = None,
        hasher: Optional[FieldHasher] = None,
    ) -> "Note":
        """
        Open an encrypted output with keypair.

        Raises:
            DecryptionFailed: If the output was not sealed to keypair
        """
        amount, blinding = unpack_note_payload(keypair.decrypt(data))
        try:
            return cls(
                amount=amount,
                keypair=keypair,
                blinding=blinding,
                index=index,
                hasher=hasher or get_default_hasher(),
            )
        except ValueError as exc:
            raise DecryptionFailed("decrypted amount is out of range") from exc

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Note):
            return NotImplemented
        return self.commitment() == other.commitment() and self.index == other.index

    def __hash__(self) -> int:
        return hash((self.commitment(), self.index))
