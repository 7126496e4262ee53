"""
Wire types for shielded transactions.

ExtData             transaction metadata bound into the proof by its hash
PublicInputs        what the verifier sees
Witness             everything the prover needs (never leaves the client)
ShieldedTransaction proof + public inputs + ext data, CBOR-serializable

Field elements are carried as 32-byte big-endian strings on the wire; the
signed extAmount is a 32-byte two's complement integer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import cbor2

from .config import (
    ADDRESS_BYTES,
    DOMAIN_SEPARATORS,
    FIELD_ELEMENT_BYTES,
    FIELD_SIZE,
    INPUT_ARITIES,
    MAX_EXT_AMOUNT,
    MAX_FEE,
    MAX_TRANSACTION_PAYLOAD_BYTES,
    OUTPUT_COUNT,
    PAYLOAD_VERSION,
    ZERO_ADDRESS,
)
from .exceptions import CryptographicError, InvalidExtData, TooManyInputsOrOutputs
from .hashing import from_field_bytes, to_field, to_field_bytes
from .security import encode_length_prefixed, hash_to_field

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{%d}$" % (2 * ADDRESS_BYTES))


def normalize_address(value: str) -> str:
    """
    Lower-case a 0x-prefixed 20-byte external address.

    Raises:
        InvalidExtData: If value is not such an address
    """
    if not isinstance(value, str) or not _ADDRESS_RE.match(value):
        raise InvalidExtData(f"invalid address: {value!r}")
    return value.lower()


def is_zero_address(value: str) -> bool:
    return normalize_address(value) == ZERO_ADDRESS


def _is_field(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < FIELD_SIZE


# ============================================================================
# EXT DATA
# ============================================================================


@dataclass(frozen=True)
class ExtData:
    """
    Transaction metadata bound into the proof through ext_data_hash.

    Attributes:
        recipient: Withdrawal recipient (zero address for deposits/transfers)
        ext_amount: Signed value entering (+) or leaving (-) the pool
        relayer: Address paid the fee
        fee: Relayer fee taken from the pool
        encrypted_output1: Envelope for the first output note
        encrypted_output2: Envelope for the second output note
        is_l1_withdrawal: Pay the withdrawal out through the bridge
        l1_fee: Fee for the origin-domain unwrap step
    """

    recipient: str = ZERO_ADDRESS
    ext_amount: int = 0
    relayer: str = ZERO_ADDRESS
    fee: int = 0
    encrypted_output1: bytes = b""
    encrypted_output2: bytes = b""
    is_l1_withdrawal: bool = False
    l1_fee: int = 0

    def validate(self) -> None:
        normalize_address(self.recipient)
        normalize_address(self.relayer)
        if not isinstance(self.ext_amount, int) or isinstance(self.ext_amount, bool):
            raise InvalidExtData("ext_amount must be an int")
        if abs(self.ext_amount) >= MAX_EXT_AMOUNT:
            raise InvalidExtData("ext_amount out of range")
        for name, value in (("fee", self.fee), ("l1_fee", self.l1_fee)):
            if not isinstance(value, int) or isinstance(value, bool):
                raise InvalidExtData(f"{name} must be an int")
            if not 0 <= value < MAX_FEE:
                raise InvalidExtData(f"{name} out of range")
        for name, value in (
            ("encrypted_output1", self.encrypted_output1),
            ("encrypted_output2", self.encrypted_output2),
        ):
            if not isinstance(value, (bytes, bytearray)):
                raise InvalidExtData(f"{name} must be bytes")
        if not isinstance(self.is_l1_withdrawal, bool):
            raise InvalidExtData("is_l1_withdrawal must be a bool")

    def encode(self) -> bytes:
        """Fixed-order byte encoding hashed into ext_data_hash."""
        self.validate()
        return encode_length_prefixed(
            [
                bytes.fromhex(normalize_address(self.recipient)[2:]),
                self.ext_amount.to_bytes(FIELD_ELEMENT_BYTES, "big", signed=True),
                bytes.fromhex(normalize_address(self.relayer)[2:]),
                self.fee.to_bytes(FIELD_ELEMENT_BYTES, "big"),
                bytes(self.encrypted_output1),
                bytes(self.encrypted_output2),
                b"\x01" if self.is_l1_withdrawal else b"\x00",
                self.l1_fee.to_bytes(FIELD_ELEMENT_BYTES, "big"),
            ]
        )

    def hash(self) -> int:
        """ext_data_hash as a field element."""
        return hash_to_field(self.encode(), DOMAIN_SEPARATORS["ext_data"])

    @property
    def public_amount(self) -> int:
        """ext_amount folded into the field."""
        return to_field(self.ext_amount)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient": normalize_address(self.recipient),
            "ext_amount": self.ext_amount.to_bytes(FIELD_ELEMENT_BYTES, "big", signed=True),
            "relayer": normalize_address(self.relayer),
            "fee": self.fee,
            "enc1": bytes(self.encrypted_output1),
            "enc2": bytes(self.encrypted_output2),
            "l1": self.is_l1_withdrawal,
            "l1_fee": self.l1_fee,
        }

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "ExtData":
        if not isinstance(obj, dict):
            raise InvalidExtData("ext data must be a dict")
        try:
            ext_amount = obj["ext_amount"]
            if not isinstance(ext_amount, (bytes, bytearray)) or len(ext_amount) != FIELD_ELEMENT_BYTES:
                raise InvalidExtData("ext_amount must be 32 bytes")
            ext_data = cls(
                recipient=obj["recipient"],
                ext_amount=int.from_bytes(ext_amount, "big", signed=True),
                relayer=obj["relayer"],
                fee=obj["fee"],
                encrypted_output1=obj["enc1"],
                encrypted_output2=obj["enc2"],
                is_l1_withdrawal=obj["l1"],
                l1_fee=obj.get("l1_fee", 0),
            )
        except KeyError as e:
            raise InvalidExtData(f"ext data missing field: {e}") from e
        ext_data.validate()
        return ext_data


# ============================================================================
# PUBLIC INPUTS / WITNESS
# ============================================================================


@dataclass(frozen=True)
class PublicInputs:
    """Public inputs checked by the verifier."""

    root: int
    input_nullifiers: Tuple[int, ...]
    output_commitments: Tuple[int, ...]
    public_amount: int
    ext_data_hash: int

    def validate(self) -> None:
        if len(self.input_nullifiers) not in INPUT_ARITIES:
            raise TooManyInputsOrOutputs(
                f"input arity {len(self.input_nullifiers)} not in {INPUT_ARITIES}"
            )
        if len(self.output_commitments) != OUTPUT_COUNT:
            raise TooManyInputsOrOutputs(
                f"expected {OUTPUT_COUNT} outputs, got {len(self.output_commitments)}"
            )
        scalars = [self.root, self.public_amount, self.ext_data_hash]
        scalars.extend(self.input_nullifiers)
        scalars.extend(self.output_commitments)
        if not all(_is_field(value) for value in scalars):
            raise ValueError("public inputs must be field elements")

    def to_list(self) -> List[int]:
        """Flat ordering used by verifiers."""
        return [
            self.root,
            self.public_amount,
            self.ext_data_hash,
            *self.input_nullifiers,
            *self.output_commitments,
        ]

    def to_bytes(self) -> bytes:
        """Deterministic CBOR encoding of the public inputs."""
        return cbor2.dumps([to_field_bytes(value) for value in self.to_list()])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root": to_field_bytes(self.root),
            "nullifiers": [to_field_bytes(n) for n in self.input_nullifiers],
            "commitments": [to_field_bytes(c) for c in self.output_commitments],
            "public_amount": to_field_bytes(self.public_amount),
            "ext_data_hash": to_field_bytes(self.ext_data_hash),
        }

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "PublicInputs":
        public_inputs = cls(
            root=from_field_bytes(obj["root"]),
            input_nullifiers=tuple(from_field_bytes(n) for n in obj["nullifiers"]),
            output_commitments=tuple(from_field_bytes(c) for c in obj["commitments"]),
            public_amount=from_field_bytes(obj["public_amount"]),
            ext_data_hash=from_field_bytes(obj["ext_data_hash"]),
        )
        public_inputs.validate()
        return public_inputs


@dataclass
class Witness:
    """
    Private witness for the transaction circuit.

    Per-input lists are in the same (permuted) order as the public
    nullifiers; per-output lists follow the public commitments.
    """

    root: int
    new_root: int
    public_amount: int
    ext_data_hash: int
    input_nullifiers: List[int]
    input_amounts: List[int]
    input_privkeys: List[int]
    input_blindings: List[int]
    input_path_indices: List[int]
    input_path_elements: List[List[int]]
    output_commitments: List[int]
    output_amounts: List[int]
    output_pubkeys: List[int]
    output_blindings: List[int]
    output_index: int
    output_path_elements: List[int] = field(default_factory=list)
    fee: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly form with integers as decimal strings."""

        def dec(values: Sequence[int]) -> List[str]:
            return [str(v) for v in values]

        return {
            "root": str(self.root),
            "newRoot": str(self.new_root),
            "publicAmount": str(self.public_amount),
            "extDataHash": str(self.ext_data_hash),
            "inputNullifier": dec(self.input_nullifiers),
            "inAmount": dec(self.input_amounts),
            "inPrivateKey": dec(self.input_privkeys),
            "inBlinding": dec(self.input_blindings),
            "inPathIndices": dec(self.input_path_indices),
            "inPathElements": [dec(path) for path in self.input_path_elements],
            "outputCommitment": dec(self.output_commitments),
            "outAmount": dec(self.output_amounts),
            "outPubkey": dec(self.output_pubkeys),
            "outBlinding": dec(self.output_blindings),
            "outPathIndices": str(self.output_index),
            "outPathElements": dec(self.output_path_elements),
            "fee": str(self.fee),
        }


# ============================================================================
# SHIELDED TRANSACTION
# ============================================================================


@dataclass(frozen=True)
class ShieldedTransaction:
    """
    Submitted transaction: proof, public inputs and ext data.

    Example:
        >>> blob = tx.serialize()
        >>> assert ShieldedTransaction.deserialize(blob) == tx
    """

    proof: bytes
    public_inputs: PublicInputs
    ext_data: ExtData

    @property
    def nullifiers(self) -> Tuple[int, ...]:
        return self.public_inputs.input_nullifiers

    @property
    def commitments(self) -> Tuple[int, ...]:
        return self.public_inputs.output_commitments

    @property
    def root(self) -> int:
        return self.public_inputs.root

    def to_dict(self) -> Dict[str, Any]:
        return {
            "v": PAYLOAD_VERSION,
            "proof": bytes(self.proof),
            "inputs": self.public_inputs.to_dict(),
            "ext": self.ext_data.to_dict(),
        }

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "ShieldedTransaction":
        if not isinstance(obj, dict):
            raise ValueError("Invalid transaction format: expected a map")
        version = obj.get("v", PAYLOAD_VERSION)
        if version != PAYLOAD_VERSION:
            raise ValueError(
                f"Unsupported transaction version: {version} (expected {PAYLOAD_VERSION})"
            )
        if "proof" not in obj or "inputs" not in obj or "ext" not in obj:
            raise ValueError("Invalid transaction format: missing required fields")
        proof = obj["proof"]
        if not isinstance(proof, (bytes, bytearray)):
            raise ValueError("proof must be bytes")
        try:
            public_inputs = PublicInputs.from_dict(obj["inputs"])
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid public inputs: {e}") from e
        return cls(
            proof=bytes(proof),
            public_inputs=public_inputs,
            ext_data=ExtData.from_dict(obj["ext"]),
        )

    def serialize(self) -> bytes:
        """
        Raises:
            CryptographicError: If serialization fails
        """
        try:
            return cbor2.dumps(self.to_dict())
        except Exception as e:
            raise CryptographicError(f"Failed to serialize transaction: {e}") from e

    @classmethod
    def deserialize(cls, data: bytes) -> "ShieldedTransaction":
        """
        Raises:
            ValueError: If the payload is malformed
            InputError: If the ext data or input arity is invalid
            CryptographicError: If CBOR decoding fails
        """
        if not isinstance(data, (bytes, bytearray)):
            raise ValueError("transaction blob must be bytes")
        if len(data) > MAX_TRANSACTION_PAYLOAD_BYTES:
            raise ValueError("transaction payload too large")
        try:
            obj = cbor2.loads(bytes(data))
        except Exception as e:
            raise CryptographicError(f"Failed to deserialize transaction: {e}") from e
        return cls.from_dict(obj)


@dataclass
class PreparedTransaction:
    """
    Assembler output before proving.

    inputs and outputs are the permuted notes; outputs carry their
    provisional tree indices.
    """

    witness: Witness
    public_inputs: PublicInputs
    ext_data: ExtData
    inputs: List[Any]
    outputs: List[Any]

    def with_proof(self, proof: bytes) -> ShieldedTransaction:
        return ShieldedTransaction(
            proof=proof, public_inputs=self.public_inputs, ext_data=self.ext_data
        )


class TransactionStatus(Enum):
    """Lifecycle of a submitted transaction."""

    SUBMITTED = "submitted"
    VERIFIED = "verified"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


def parse_optional_address(value: Optional[str]) -> str:
    return ZERO_ADDRESS if value is None else normalize_address(value)
