"""
Shielded wallet.

A wallet keeps a local copy of the commitment tree, discovers its notes by
trial-decrypting commitment events, and builds deposit, transfer and
withdrawal transactions against the ledger. Transactions built against a
root that the ledger no longer knows, or spending a note that another
device spent first, are rebuilt from freshly synced state.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Union

from .ledger.state import LedgerState, Receipt
from .protocol.assembler import TransactionAssembler
from .protocol.config import INPUT_ARITIES
from .protocol.exceptions import AmountMismatch, DecryptionFailed, DoubleSpend, StaleOrUnknownRoot
from .protocol.factory import get_proof_system
from .protocol.keypair import Keypair
from .protocol.merkle import MerkleAccumulator
from .protocol.note import Note
from .protocol.types import ShieldedTransaction

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


class ShieldedWallet:
    """
    Notes, balance and transaction building for one keypair.

    Args:
        ledger: Ledger to read from and submit to
        keypair: Spending keypair (a new one by default)
        assembler: Transaction assembler; defaults to one proving with the
            configured proof system
        max_retries: Rebuild attempts after a stale root or lost race

    Example:
        >>> alice = ShieldedWallet(ledger)
        >>> alice.deposit(10_000_000)
        >>> alice.transfer(bob.address, 3_000_000)
        >>> alice.balance()
        7000000
    """

    def __init__(
        self,
        ledger: LedgerState,
        keypair: Optional[Keypair] = None,
        assembler: Optional[TransactionAssembler] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self.ledger = ledger
        self.keypair = keypair or Keypair(hasher=ledger.hasher)
        self.assembler = assembler or TransactionAssembler(
            prover=get_proof_system(), hasher=ledger.hasher
        )
        self.max_retries = max_retries
        self._tree: Optional[MerkleAccumulator] = None
        self._scanned = 0
        self._notes: Dict[int, Note] = {}

    @property
    def address(self) -> str:
        return self.keypair.address()

    # ========================================================================
    # SYNC
    # ========================================================================

    def sync(self) -> MerkleAccumulator:
        """Refresh the local tree and scan new commitment events."""
        self._tree = self.ledger.tree_snapshot()
        self.scan()
        return self._tree

    def scan(self) -> List[Note]:
        """Decrypt commitment events not yet seen; returns newly found notes."""
        found = []
        for event in self.ledger.get_commitment_events(self._scanned):
            self._scanned = event.index + 1
            if not event.encrypted_output:
                continue
            try:
                note = Note.decrypt(
                    self.keypair,
                    event.encrypted_output,
                    index=event.index,
                    hasher=self.ledger.hasher,
                )
            except DecryptionFailed:
                continue
            # a sender can seal any payload to us; only trust notes that match the leaf
            if note.commitment() != event.commitment or note.amount == 0:
                continue
            self._notes[event.index] = note
            found.append(note)
        if found:
            logger.debug("found %d new notes", len(found))
        return found

    def add_note(self, note: Note) -> None:
        """Track a note learned out of band, such as a public deposit."""
        if note.index is None:
            raise ValueError("note index is required")
        self._notes[note.index] = note

    def unspent_notes(self) -> List[Note]:
        return [
            note
            for note in self._notes.values()
            if not self.ledger.is_nullifier_spent(note.nullifier())
        ]

    def balance(self) -> int:
        self.sync()
        return sum(note.amount for note in self.unspent_notes())

    def select_inputs(self, amount: int) -> List[Note]:
        """
        Largest-first selection covering amount with at most 16 notes.

        Raises:
            AmountMismatch: If unspent notes cannot cover amount
        """
        if amount <= 0:
            return []
        selected, total = [], 0
        for note in sorted(self.unspent_notes(), key=lambda n: n.amount, reverse=True):
            if total >= amount or len(selected) == INPUT_ARITIES[-1]:
                break
            selected.append(note)
            total += note.amount
        if total < amount:
            raise AmountMismatch(f"insufficient shielded balance for {amount}")
        return selected

    # ========================================================================
    # TRANSACTIONS
    # ========================================================================

    def _submit(
        self,
        build: Callable[[MerkleAccumulator], ShieldedTransaction],
        supplied_amount: int = 0,
    ) -> Receipt:
        attempt = 0
        while True:
            tree = self.sync()
            tx = build(tree)
            try:
                return self.ledger.accept(tx, supplied_amount=supplied_amount)
            except (StaleOrUnknownRoot, DoubleSpend) as e:
                attempt += 1
                if attempt > self.max_retries:
                    raise
                logger.info("rebuilding transaction after %s (attempt %d)", type(e).__name__, attempt)

    def deposit(self, amount: int) -> Receipt:
        """Shield amount into a new note owned by this wallet."""

        def build(tree: MerkleAccumulator) -> ShieldedTransaction:
            return self.assembler.build(
                tree, outputs=[Note(amount=amount, keypair=self.keypair, hasher=self.ledger.hasher)]
            )

        return self._submit(build, supplied_amount=amount)

    def transfer(
        self,
        to: Union[str, Keypair],
        amount: int,
        fee: int = 0,
        relayer: Optional[str] = None,
    ) -> Receipt:
        """Send amount to a shielded address, change back to this wallet."""
        recipient = to if isinstance(to, Keypair) else Keypair.from_address(to, hasher=self.ledger.hasher)

        def build(tree: MerkleAccumulator) -> ShieldedTransaction:
            inputs = self.select_inputs(amount + fee)
            change = sum(note.amount for note in inputs) - amount - fee
            outputs = [
                Note(amount=amount, keypair=recipient, hasher=self.ledger.hasher),
                Note(amount=change, keypair=self.keypair, hasher=self.ledger.hasher),
            ]
            return self.assembler.build(
                tree, inputs=inputs, outputs=outputs, fee=fee, relayer=relayer
            )

        return self._submit(build)

    def withdraw(
        self,
        amount: int,
        recipient: str,
        fee: int = 0,
        relayer: Optional[str] = None,
        is_l1_withdrawal: bool = False,
        l1_fee: int = 0,
    ) -> Receipt:
        """Unshield amount to an external address, optionally across the bridge."""

        def build(tree: MerkleAccumulator) -> ShieldedTransaction:
            inputs = self.select_inputs(amount + fee)
            change = sum(note.amount for note in inputs) - amount - fee
            return self.assembler.build(
                tree,
                inputs=inputs,
                outputs=[Note(amount=change, keypair=self.keypair, hasher=self.ledger.hasher)],
                fee=fee,
                recipient=recipient,
                relayer=relayer,
                is_l1_withdrawal=is_l1_withdrawal,
                l1_fee=l1_fee,
            )

        return self._submit(build)
