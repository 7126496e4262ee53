"""Public API for shielded_pool.protocol."""
from __future__ import annotations

from .assembler import TransactionAssembler
from .codec import NaclBoxScheme
from .factory import get_proof_system
from .feature_flags import get_backend_type, set_backend_type
from .hashing import Sha3FieldHash, get_default_hasher
from .interfaces import EncryptionScheme, FieldHasher, ProofSystem, Prover, Verifier
from .keypair import Keypair
from .merkle import MerkleAccumulator, MerklePath
from .note import Note
from .types import (
    ExtData,
    PreparedTransaction,
    PublicInputs,
    ShieldedTransaction,
    TransactionStatus,
    Witness,
)

__all__ = [
    "TransactionAssembler",
    "NaclBoxScheme",
    "get_proof_system",
    "get_backend_type",
    "set_backend_type",
    "Sha3FieldHash",
    "get_default_hasher",
    "EncryptionScheme",
    "FieldHasher",
    "ProofSystem",
    "Prover",
    "Verifier",
    "Keypair",
    "MerkleAccumulator",
    "MerklePath",
    "Note",
    "ExtData",
    "PreparedTransaction",
    "PublicInputs",
    "ShieldedTransaction",
    "TransactionStatus",
    "Witness",
]
