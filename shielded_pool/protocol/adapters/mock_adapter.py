from __future__ import annotations

import hashlib
import hmac
from typing import Any, Dict, Optional

from ..config import DOMAIN_SEPARATORS, FIELD_SIZE, INPUT_ARITIES, MAX_AMOUNT_BITS, OUTPUT_COUNT
from ..exceptions import WitnessError
from ..hashing import get_default_hasher
from ..interfaces import FieldHasher, ProofSystem
from ..merkle import MerklePath
from ..security import constant_time_compare
from ..types import PublicInputs, Witness


class MockProofSystem(ProofSystem):
    """
    Constraint-checking stand-in for a SNARK backend.

    Notes:
    - prove() checks every relation the transaction circuit enforces and
      raises WitnessError when one fails.
    - The proof is an HMAC-SHA3 tag over the public inputs under a setup key
      shared with the verifier. It is NOT zero-knowledge and NOT sound against
      anyone holding the setup key.
    """

    _BACKEND_NAME = "MockProofSystem"
    _BACKEND_VERSION = "0.1.0"
    _TAG_LEN = 32

    def __init__(
        self, setup_key: Optional[bytes] = None, hasher: Optional[FieldHasher] = None
    ) -> None:
        if setup_key is None:
            setup_key = hashlib.sha3_256(DOMAIN_SEPARATORS["mock_proof"]).digest()
        if not isinstance(setup_key, bytes) or not setup_key:
            raise ValueError("setup_key must be non-empty bytes")
        self._setup_key = setup_key
        self._hasher = hasher or get_default_hasher()

    @property
    def backend_name(self) -> str:
        return self._BACKEND_NAME

    @property
    def backend_version(self) -> str:
        return self._BACKEND_VERSION

    # ========================================================================
    # PROVING
    # ========================================================================

    def prove(self, witness: Witness) -> bytes:
        if not isinstance(witness, Witness):
            raise WitnessError("witness must be a Witness")
        try:
            self._check_shape(witness)
            self._check_inputs(witness)
            self._check_outputs(witness)
            self._check_balance(witness)
            return self._tag(self.public_inputs_of(witness))
        except (TypeError, ValueError) as e:
            raise WitnessError(f"malformed witness: {e}") from e

    @staticmethod
    def public_inputs_of(witness: Witness) -> PublicInputs:
        return PublicInputs(
            root=witness.root,
            input_nullifiers=tuple(witness.input_nullifiers),
            output_commitments=tuple(witness.output_commitments),
            public_amount=witness.public_amount,
            ext_data_hash=witness.ext_data_hash,
        )

    def _check_shape(self, witness: Witness) -> None:
        n_in = len(witness.input_nullifiers)
        if n_in not in INPUT_ARITIES:
            raise WitnessError(f"unsupported input arity {n_in}")
        per_input = [
            witness.input_amounts,
            witness.input_privkeys,
            witness.input_blindings,
            witness.input_path_indices,
            witness.input_path_elements,
        ]
        if any(len(values) != n_in for values in per_input):
            raise WitnessError("input vectors have inconsistent lengths")
        per_output = [
            witness.output_commitments,
            witness.output_amounts,
            witness.output_pubkeys,
            witness.output_blindings,
        ]
        if any(len(values) != OUTPUT_COUNT for values in per_output):
            raise WitnessError(f"expected {OUTPUT_COUNT} outputs")
        if len(set(witness.input_nullifiers)) != n_in:
            raise WitnessError("duplicate input nullifier")

    def _check_inputs(self, witness: Witness) -> None:
        hasher = self._hasher
        for i, nullifier in enumerate(witness.input_nullifiers):
            amount = witness.input_amounts[i]
            if not 0 <= amount < 2**MAX_AMOUNT_BITS:
                raise WitnessError(f"input {i} amount out of range")
            privkey = witness.input_privkeys[i]
            pubkey = hasher.hash(privkey)
            commitment = hasher.hash(amount, pubkey, witness.input_blindings[i])
            path_index = witness.input_path_indices[i]
            if hasher.hash(commitment, path_index, privkey) != nullifier:
                raise WitnessError(f"input {i} nullifier mismatch")
            if amount == 0:
                continue
            path = MerklePath(
                index=path_index, path_elements=tuple(witness.input_path_elements[i])
            )
            if path.compute_root(commitment, hasher) != witness.root:
                raise WitnessError(f"input {i} is not a member of the tree")

    def _check_outputs(self, witness: Witness) -> None:
        for i, commitment in enumerate(witness.output_commitments):
            amount = witness.output_amounts[i]
            if not 0 <= amount < 2**MAX_AMOUNT_BITS:
                raise WitnessError(f"output {i} amount out of range")
            expected = self._hasher.hash(
                amount, witness.output_pubkeys[i], witness.output_blindings[i]
            )
            if expected != commitment:
                raise WitnessError(f"output {i} commitment mismatch")

    def _check_balance(self, witness: Witness) -> None:
        lhs = (sum(witness.input_amounts) + witness.public_amount) % FIELD_SIZE
        rhs = (sum(witness.output_amounts) + witness.fee) % FIELD_SIZE
        if lhs != rhs:
            raise WitnessError("inputs + public amount != outputs + fee")

    def _tag(self, public_inputs: PublicInputs) -> bytes:
        return hmac.new(self._setup_key, public_inputs.to_bytes(), hashlib.sha3_256).digest()

    # ========================================================================
    # VERIFICATION
    # ========================================================================

    def verify(self, proof: bytes, public_inputs: PublicInputs) -> bool:
        try:
            if not isinstance(proof, (bytes, bytearray)):
                return False
            if len(proof) != self._TAG_LEN:
                return False
            if not isinstance(public_inputs, PublicInputs):
                return False
            public_inputs.validate()
            return constant_time_compare(bytes(proof), self._tag(public_inputs))
        except Exception:
            return False

    def get_backend_info(self) -> Dict[str, Any]:
        return {
            "name": self.backend_name,
            "version": self.backend_version,
            "adapter": "mock",
            "hash": self._hasher.name,
            "security": "mock_only",
        }
