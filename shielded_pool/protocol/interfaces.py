"""
Capability interfaces for the primitives the protocol consumes.

The hash, the proof system and the note encryption scheme are injected into
the assembler, the ledger and the keypairs through these interfaces, so any of
them can be swapped without touching protocol logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .types import PublicInputs, Witness


class FieldHasher(ABC):
    """Collision-resistant hash from field elements to a field element."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def hash(self, *elements: int) -> int:
        """
        Hash one or more field elements.

        Raises:
            ValueError: If an element is outside [0, FIELD_SIZE)
        """

    def hash_pair(self, left: int, right: int) -> int:
        return self.hash(left, right)


class Prover(ABC):
    """Produces proof bytes from a transaction witness."""

    @abstractmethod
    def prove(self, witness: Witness) -> bytes:
        """
        Raises:
            WitnessError: If the witness does not satisfy the circuit
            ProverIOError: If the prover cannot be run
        """


class Verifier(ABC):
    """Checks proof bytes against public inputs. Never raises."""

    @abstractmethod
    def verify(self, proof: bytes, public_inputs: PublicInputs) -> bool:
        ...


class ProofSystem(Prover, Verifier):
    """A matched prover/verifier pair."""

    @property
    @abstractmethod
    def backend_name(self) -> str:
        ...

    @property
    @abstractmethod
    def backend_version(self) -> str:
        ...


class EncryptionScheme(ABC):
    """Hybrid public-key encryption used to deliver notes to their owners."""

    @abstractmethod
    def public_key(self, private_key: bytes) -> bytes:
        """Derive the encryption public key for a private key."""

    @abstractmethod
    def encrypt(self, public_key: bytes, plaintext: bytes) -> bytes:
        ...

    @abstractmethod
    def decrypt(self, private_key: bytes, ciphertext: bytes) -> bytes:
        """
        Raises:
            DecryptionFailed: If the ciphertext was not sealed to this key
        """
