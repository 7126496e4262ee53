"""
Transaction assembler.

Turns input notes, output notes and withdrawal parameters into a balanced
transaction against a snapshot of the commitment tree:

1. resolve authentication paths for funded inputs (zero inputs get a zero path)
2. pad to the fixed arities and permute inputs and outputs independently
3. assign provisional tree indices to the outputs
4. derive extAmount = fee + sum(outputs) - sum(inputs) and fold it into the field
5. encrypt the outputs and hash the ext data
6. emit the witness and public inputs, and optionally run the prover

The assembler only reads the tree; the new root is computed on a copy.
"""

from __future__ import annotations

import logging
import random
import time
from typing import List, Optional, Sequence, Tuple

from .config import INPUT_ARITIES, MAX_EXT_AMOUNT, OUTPUT_COUNT
from .exceptions import (
    CommitmentNotFound,
    ConfigurationError,
    InputNotFound,
    InvalidExtData,
    ProverFailure,
    TooManyInputsOrOutputs,
)
from .hashing import get_default_hasher
from .interfaces import FieldHasher, Prover
from .merkle import MerkleAccumulator, MerklePath
from .note import Note
from .security import permute
from .types import (
    ExtData,
    PreparedTransaction,
    PublicInputs,
    ShieldedTransaction,
    Witness,
    is_zero_address,
    parse_optional_address,
)

logger = logging.getLogger(__name__)


def input_arity(count: int) -> int:
    """
    Smallest supported input arity that holds count inputs.

    Raises:
        TooManyInputsOrOutputs: If count exceeds the largest arity
    """
    for arity in INPUT_ARITIES:
        if count <= arity:
            return arity
    raise TooManyInputsOrOutputs(
        f"{count} inputs exceed the maximum of {INPUT_ARITIES[-1]}"
    )


def compute_ext_amount(inputs: Sequence[Note], outputs: Sequence[Note], fee: int) -> int:
    """Signed value entering (+) or leaving (-) the pool."""
    return fee + sum(note.amount for note in outputs) - sum(note.amount for note in inputs)


class TransactionAssembler:
    """
    Builds shielded transactions.

    Args:
        prover: Proof backend used by build()/prove()
        hasher: Field hash; must match the ledger's
        shuffle_rng: Seeded random.Random for reproducible slot order in tests

    Example:
        >>> assembler = TransactionAssembler(prover=MockProofSystem())
        >>> tx = assembler.build(tree, inputs=[], outputs=[Note(10, alice)])
    """

    def __init__(
        self,
        prover: Optional[Prover] = None,
        hasher: Optional[FieldHasher] = None,
        shuffle_rng: Optional[random.Random] = None,
    ) -> None:
        self.prover = prover
        self.hasher = hasher or get_default_hasher()
        self.shuffle_rng = shuffle_rng

    # ========================================================================
    # PREPARATION
    # ========================================================================

    def _pad(self, notes: Sequence[Note], size: int) -> List[Note]:
        padded = list(notes)
        while len(padded) < size:
            padded.append(Note.zero(hasher=self.hasher))
        return padded

    def _resolve(self, tree: MerkleAccumulator, note: Note) -> Tuple[Note, MerklePath]:
        if note.amount == 0:
            return note, MerklePath(index=note.index or 0, path_elements=(0,) * tree.height)
        commitment = note.commitment()
        if note.index is not None and note.index < tree.size and tree.leaf(note.index) == commitment:
            return note, tree.path(note.index)
        try:
            path = tree.path_to(commitment)
        except CommitmentNotFound as e:
            raise InputNotFound(f"input commitment {commitment:#x} is not in the tree") from e
        if note.index != path.index:
            note = note.with_index(path.index)
        return note, path

    def prepare(
        self,
        tree: MerkleAccumulator,
        inputs: Sequence[Note] = (),
        outputs: Sequence[Note] = (),
        fee: int = 0,
        recipient: Optional[str] = None,
        relayer: Optional[str] = None,
        is_l1_withdrawal: bool = False,
        l1_fee: int = 0,
    ) -> PreparedTransaction:
        """
        Assemble witness and public inputs without proving.

        Raises:
            TooManyInputsOrOutputs: More than 16 inputs or 2 outputs
            InputNotFound: A funded input is not in tree
            MissingIndexOrKey: A funded input has no privkey
            InvalidExtData: Amounts out of range or a withdrawal without recipient
            TreeFull: The outputs do not fit in tree
        """
        if len(outputs) > OUTPUT_COUNT:
            raise TooManyInputsOrOutputs(
                f"{len(outputs)} outputs exceed the maximum of {OUTPUT_COUNT}"
            )
        arity = input_arity(len(inputs))

        resolved = [self._resolve(tree, note) for note in self._pad(inputs, arity)]
        resolved = permute(resolved, self.shuffle_rng)
        padded_outputs = permute(self._pad(outputs, OUTPUT_COUNT), self.shuffle_rng)

        first_index = tree.next_index
        out_notes = [
            note.with_index(first_index + offset) for offset, note in enumerate(padded_outputs)
        ]
        in_notes = [note for note, _ in resolved]
        nullifiers = [note.nullifier() for note in in_notes]
        commitments = [note.commitment() for note in out_notes]

        ext_amount = compute_ext_amount(in_notes, out_notes, fee)
        if abs(ext_amount) >= MAX_EXT_AMOUNT:
            raise InvalidExtData("ext_amount out of range")

        recipient = parse_optional_address(recipient)
        if ext_amount < 0 and is_zero_address(recipient):
            raise InvalidExtData("withdrawal needs a recipient")
        if is_l1_withdrawal and ext_amount >= 0:
            raise InvalidExtData("L1 withdrawal must move value out of the pool")

        ext_data = ExtData(
            recipient=recipient,
            ext_amount=ext_amount,
            relayer=parse_optional_address(relayer),
            fee=fee,
            encrypted_output1=out_notes[0].encrypt(),
            encrypted_output2=out_notes[1].encrypt(),
            is_l1_withdrawal=is_l1_withdrawal,
            l1_fee=l1_fee,
        )
        ext_data_hash = ext_data.hash()

        snapshot = tree.copy()
        new_root = snapshot.insert_batch(commitments)
        output_path = snapshot.path(first_index)

        public_inputs = PublicInputs(
            root=tree.root,
            input_nullifiers=tuple(nullifiers),
            output_commitments=tuple(commitments),
            public_amount=ext_data.public_amount,
            ext_data_hash=ext_data_hash,
        )
        witness = Witness(
            root=tree.root,
            new_root=new_root,
            public_amount=ext_data.public_amount,
            ext_data_hash=ext_data_hash,
            input_nullifiers=nullifiers,
            input_amounts=[note.amount for note in in_notes],
            input_privkeys=[note.keypair.privkey or 0 for note in in_notes],
            input_blindings=[note.blinding for note in in_notes],
            input_path_indices=[path.index for _, path in resolved],
            input_path_elements=[list(path.path_elements) for _, path in resolved],
            output_commitments=commitments,
            output_amounts=[note.amount for note in out_notes],
            output_pubkeys=[note.pubkey for note in out_notes],
            output_blindings=[note.blinding for note in out_notes],
            output_index=first_index,
            output_path_elements=list(output_path.path_elements[1:]),
            fee=fee,
        )
        logger.debug(
            "prepared transaction: %d inputs, ext_amount=%d, fee=%d",
            arity,
            ext_amount,
            fee,
        )
        return PreparedTransaction(
            witness=witness,
            public_inputs=public_inputs,
            ext_data=ext_data,
            inputs=in_notes,
            outputs=out_notes,
        )

    # ========================================================================
    # PROVING
    # ========================================================================

    def prove(self, prepared: PreparedTransaction) -> ShieldedTransaction:
        """
        Run the prover over a prepared transaction.

        Raises:
            ProverFailure: If the prover fails for any reason
            ConfigurationError: If no prover is configured
        """
        if self.prover is None:
            raise ConfigurationError("assembler has no prover")
        started = time.perf_counter()
        try:
            proof = self.prover.prove(prepared.witness)
        except ProverFailure:
            raise
        except Exception as e:
            raise ProverFailure(f"prover failed: {e}") from e
        logger.debug("proof generated in %.3fs", time.perf_counter() - started)
        return prepared.with_proof(proof)

    def build(self, tree: MerkleAccumulator, **kwargs) -> ShieldedTransaction:
        """prepare() followed by prove(); accepts the same keyword arguments."""
        return self.prove(self.prepare(tree, **kwargs))
