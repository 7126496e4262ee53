"""
Ledger state machine.

The ledger owns the commitment tree, the spent-nullifier set, the event log,
the account registry, the pool balance and the payout outbox. Every mutation
goes through accept() or public_deposit(), which validate first and then
apply all effects in a single storage batch under the ledger lock. A rejected
transaction leaves no trace.

Validation order for a shielded transaction:
    shape -> root -> nullifiers -> ext data hash -> public amount -> limits
    -> capacity -> proof -> supplied funds
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

import cbor2

from ..protocol.config import (
    FIELD_SIZE,
    MAX_EXT_AMOUNT,
    MERKLE_TREE_HEIGHT,
    OUTPUT_COUNT,
    ROOT_HISTORY_SIZE,
)
from ..protocol.exceptions import (
    AmountMismatch,
    DoubleSpend,
    InvalidAmount,
    InvalidExtData,
    InvalidKeyFormat,
    InvalidProof,
    LimitExceeded,
    ShieldedPoolError,
    StaleOrUnknownRoot,
    TreeFull,
)
from ..protocol.hashing import from_field_bytes, get_default_hasher, to_field_bytes
from ..protocol.interfaces import FieldHasher, Verifier
from ..protocol.keypair import Keypair
from ..protocol.merkle import MerkleAccumulator
from ..protocol.types import (
    ExtData,
    ShieldedTransaction,
    TransactionStatus,
    is_zero_address,
    normalize_address,
)
from .storage import (
    ACCOUNTS,
    BRIDGE_MESSAGES,
    COMMITMENTS,
    META,
    NULLIFIER_EVENTS,
    NULLIFIERS,
    OUTBOX,
    ROOTS,
    InMemoryStore,
    KeyValueStore,
    WriteBatch,
    be_u64,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_BALANCE_KEY = META + b"balance"
_LIMITS_KEY = META + b"limits"
_ROOT_SEQ_KEY = META + b"root_seq"
_NULLIFIER_SEQ_KEY = META + b"nullifier_seq"
_OUTBOX_SEQ_KEY = META + b"outbox_seq"
_SPENT = b"\x01"


# ============================================================================
# RECORDS
# ============================================================================


@dataclass(frozen=True)
class LedgerLimits:
    """Deposit ceiling and withdrawal floor, both in pool units."""

    maximum_deposit_amount: int = MAX_EXT_AMOUNT - 1
    minimal_withdrawal_amount: int = 0

    def validate(self) -> None:
        if not 0 <= self.maximum_deposit_amount < MAX_EXT_AMOUNT:
            raise ValueError("maximum_deposit_amount out of range")
        if not 0 <= self.minimal_withdrawal_amount < MAX_EXT_AMOUNT:
            raise ValueError("minimal_withdrawal_amount out of range")


@dataclass(frozen=True)
class NewCommitment:
    commitment: int
    index: int
    encrypted_output: bytes


@dataclass(frozen=True)
class NewNullifier:
    nullifier: int


@dataclass(frozen=True)
class PublicKey:
    owner: str
    key: str


class PayoutKind(Enum):
    WITHDRAWAL = "withdrawal"
    BRIDGE = "bridge"
    RELAYER_FEE = "relayer_fee"


@dataclass(frozen=True)
class Payout:
    """Value leaving the pool, waiting in the outbox for delivery."""

    kind: PayoutKind
    recipient: str
    amount: int
    l1_fee: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "recipient": self.recipient,
            "amount": self.amount,
            "l1_fee": self.l1_fee,
        }

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "Payout":
        return cls(
            kind=PayoutKind(obj["kind"]),
            recipient=obj["recipient"],
            amount=obj["amount"],
            l1_fee=obj.get("l1_fee", 0),
        )


@dataclass(frozen=True)
class Receipt:
    """Result of an accepted transaction or public deposit."""

    status: TransactionStatus
    root: int
    first_index: int
    commitments: Tuple[int, ...]
    nullifiers: Tuple[int, ...] = ()
    payouts: Tuple[Payout, ...] = field(default_factory=tuple)


# ============================================================================
# LEDGER
# ============================================================================


class LedgerState:
    """
    Authoritative shielded pool state.

    Args:
        verifier: Proof verifier matching the clients' prover
        storage: Key-value backend (in-memory by default)
        height: Commitment tree height
        hasher: Field hash shared with clients
        root_history_size: Number of recent roots accepted in proofs (K)
        limits: Initial deposit/withdrawal limits

    Example:
        >>> ledger = LedgerState(verifier=MockProofSystem(), height=5)
        >>> receipt = ledger.accept(tx, supplied_amount=tx.ext_data.ext_amount)
        >>> ledger.is_nullifier_spent(tx.nullifiers[0])
        True
    """

    def __init__(
        self,
        verifier: Verifier,
        storage: Optional[KeyValueStore] = None,
        height: int = MERKLE_TREE_HEIGHT,
        hasher: Optional[FieldHasher] = None,
        root_history_size: int = ROOT_HISTORY_SIZE,
        limits: Optional[LedgerLimits] = None,
    ) -> None:
        self._verifier = verifier
        self._storage = storage if storage is not None else InMemoryStore()
        self._hasher = hasher or get_default_hasher()
        self._lock = threading.RLock()
        self._root_history_size = root_history_size
        self._tree = self._load_tree(height, root_history_size)

        stored_limits = self._storage.get(_LIMITS_KEY)
        if stored_limits is not None:
            self._limits = LedgerLimits(**cbor2.loads(stored_limits))
        else:
            self._limits = limits or LedgerLimits()
            self._limits.validate()
            with self._storage.batch() as batch:
                self._put_limits(batch, self._limits)

    def _load_tree(self, height: int, root_history_size: int) -> MerkleAccumulator:
        leaves = [
            from_field_bytes(cbor2.loads(value)["c"])
            for _, value in self._storage.iter_prefix(COMMITMENTS)
        ]
        roots = [from_field_bytes(value) for _, value in self._storage.iter_prefix(ROOTS)]
        tree = MerkleAccumulator.from_leaves(
            leaves,
            height=height,
            hasher=self._hasher,
            root_history_size=root_history_size,
            root_history=roots[-root_history_size:] or None,
        )
        if not roots:
            with self._storage.batch() as batch:
                batch.put(ROOTS + be_u64(0), to_field_bytes(tree.root))
                batch.put(_ROOT_SEQ_KEY, cbor2.dumps(1))
        if leaves:
            logger.info("loaded ledger with %d leaves", len(leaves))
        return tree

    # ========================================================================
    # READ API
    # ========================================================================

    @property
    def root(self) -> int:
        with self._lock:
            return self._tree.root

    @property
    def height(self) -> int:
        return self._tree.height

    @property
    def hasher(self) -> FieldHasher:
        return self._hasher

    @property
    def size(self) -> int:
        with self._lock:
            return self._tree.size

    @property
    def limits(self) -> LedgerLimits:
        return self._limits

    @property
    def pool_balance(self) -> int:
        return self._get_int(_BALANCE_KEY)

    @property
    def storage(self) -> KeyValueStore:
        return self._storage

    def get_committed_leaves(self, from_index: int = 0) -> List[int]:
        with self._lock:
            return list(self._tree.leaves[from_index:])

    def get_known_roots(self) -> List[int]:
        """Known roots, oldest first; the last one is current."""
        with self._lock:
            return list(self._tree.root_history)

    def is_known_root(self, root: int) -> bool:
        with self._lock:
            return self._tree.is_known_root(root)

    def is_nullifier_spent(self, nullifier: int) -> bool:
        return self._storage.has(NULLIFIERS + to_field_bytes(nullifier))

    def tree_snapshot(self) -> MerkleAccumulator:
        """Independent copy of the commitment tree."""
        with self._lock:
            return self._tree.copy()

    def get_commitment_events(self, from_index: int = 0) -> List[NewCommitment]:
        events = []
        for k, value in self._storage.iter_prefix(COMMITMENTS):
            index = int.from_bytes(k[len(COMMITMENTS):], "big")
            if index < from_index:
                continue
            record = cbor2.loads(value)
            events.append(
                NewCommitment(
                    commitment=from_field_bytes(record["c"]),
                    index=index,
                    encrypted_output=record["enc"],
                )
            )
        return events

    def get_nullifier_events(self) -> List[NewNullifier]:
        return [
            NewNullifier(nullifier=from_field_bytes(value))
            for _, value in self._storage.iter_prefix(NULLIFIER_EVENTS)
        ]

    def get_public_key_events(self) -> List[PublicKey]:
        return [
            PublicKey(owner=k[len(ACCOUNTS):].decode(), key=value.decode())
            for k, value in self._storage.iter_prefix(ACCOUNTS)
        ]

    def get_account(self, owner: str) -> Optional[str]:
        value = self._storage.get(ACCOUNTS + normalize_address(owner).encode())
        return value.decode() if value is not None else None

    def is_message_processed(self, message_id: bytes) -> bool:
        return self._storage.has(BRIDGE_MESSAGES + message_id)

    def get_message_outcome(self, message_id: bytes) -> Optional[str]:
        value = self._storage.get(BRIDGE_MESSAGES + message_id)
        return value.decode() if value is not None else None

    def pending_payouts(self) -> List[Payout]:
        return [
            Payout.from_dict(cbor2.loads(value))
            for _, value in self._storage.iter_prefix(OUTBOX)
        ]

    # ========================================================================
    # ADMINISTRATION
    # ========================================================================

    def configure_limits(
        self,
        maximum_deposit_amount: Optional[int] = None,
        minimal_withdrawal_amount: Optional[int] = None,
    ) -> LedgerLimits:
        with self._lock:
            limits = LedgerLimits(
                maximum_deposit_amount=(
                    self._limits.maximum_deposit_amount
                    if maximum_deposit_amount is None
                    else maximum_deposit_amount
                ),
                minimal_withdrawal_amount=(
                    self._limits.minimal_withdrawal_amount
                    if minimal_withdrawal_amount is None
                    else minimal_withdrawal_amount
                ),
            )
            limits.validate()
            with self._storage.batch() as batch:
                self._put_limits(batch, limits)
            self._limits = limits
            logger.info(
                "limits updated: max deposit %d, min withdrawal %d",
                limits.maximum_deposit_amount,
                limits.minimal_withdrawal_amount,
            )
            return limits

    def register_account(self, owner: str, address: str) -> PublicKey:
        """
        Record owner -> shielded address and emit a PublicKey event.

        Raises:
            InvalidExtData: If owner is not an external address
            InvalidKeyFormat: If address is not a shielded address
        """
        with self._lock:
            with self._storage.batch() as batch:
                event = self._put_account(batch, owner, address)
            logger.info("registered shielded address for %s", event.owner)
            return event

    def mark_message_processed(self, message_id: bytes, outcome: str) -> None:
        with self._lock:
            with self._storage.batch() as batch:
                batch.put(BRIDGE_MESSAGES + message_id, outcome.encode())

    def settle_payouts(
        self,
        deliver: Callable[[Payout], T],
        kinds: Optional[Iterable[PayoutKind]] = None,
    ) -> List[T]:
        """
        Hand pending payouts of the given kinds to deliver, oldest first.

        A payout leaves the outbox only after deliver returns for it. If
        deliver raises, that payout and every later one stay queued and the
        error propagates.
        """
        wanted = set(kinds) if kinds is not None else set(PayoutKind)
        with self._lock:
            results = []
            for k, value in self._storage.iter_prefix(OUTBOX):
                payout = Payout.from_dict(cbor2.loads(value))
                if payout.kind not in wanted:
                    continue
                results.append(deliver(payout))
                with self._storage.batch() as batch:
                    batch.delete(k)
            return results

    def drain_outbox(self, kinds: Optional[Iterable[PayoutKind]] = None) -> List[Payout]:
        """Remove and return pending payouts of the given kinds (all by default), oldest first."""
        return self.settle_payouts(lambda payout: payout, kinds)

    # ========================================================================
    # STATE TRANSITIONS
    # ========================================================================

    def validate(self, tx: ShieldedTransaction, supplied_amount: int = 0) -> None:
        """
        Run every acceptance check without applying anything.

        Raises:
            TooManyInputsOrOutputs, InvalidExtData, StaleOrUnknownRoot,
            DoubleSpend, AmountMismatch, LimitExceeded, TreeFull, InvalidProof
        """
        if not isinstance(tx, ShieldedTransaction):
            raise TypeError("tx must be a ShieldedTransaction")
        public_inputs, ext_data = tx.public_inputs, tx.ext_data

        public_inputs.validate()
        ext_data.validate()

        with self._lock:
            if not self._tree.is_known_root(public_inputs.root):
                raise StaleOrUnknownRoot(f"unknown root {public_inputs.root:#x}")

            nullifiers = public_inputs.input_nullifiers
            if len(set(nullifiers)) != len(nullifiers):
                raise DoubleSpend("transaction spends the same nullifier twice")
            for nullifier in nullifiers:
                if self.is_nullifier_spent(nullifier):
                    raise DoubleSpend(f"nullifier {nullifier:#x} already spent")

            if public_inputs.ext_data_hash != ext_data.hash():
                raise InvalidExtData("ext data does not match ext_data_hash")
            if public_inputs.public_amount != ext_data.public_amount:
                raise AmountMismatch("public amount does not match ext_amount")

            self._check_settlement(ext_data)
            self._check_limits(ext_data.ext_amount)

            if not self._tree.can_insert(OUTPUT_COUNT):
                raise TreeFull("commitment tree is full")

            if not self._verifier.verify(tx.proof, public_inputs):
                raise InvalidProof("proof does not verify")

            expected = max(ext_data.ext_amount, 0)
            if supplied_amount != expected:
                raise AmountMismatch(
                    f"supplied {supplied_amount}, transaction requires {expected}"
                )

    def accept(
        self,
        tx: ShieldedTransaction,
        supplied_amount: int = 0,
        account: Optional[Tuple[str, str]] = None,
        message_id: Optional[bytes] = None,
    ) -> Receipt:
        """
        Validate and apply a shielded transaction atomically.

        Args:
            tx: Transaction to apply
            supplied_amount: Funds handed to the pool with the transaction
            account: Optional (owner, shielded address) registered alongside
            message_id: Bridge message id recorded alongside

        Raises:
            ShieldedPoolError: On any rejection; nothing is applied
        """
        with self._lock:
            try:
                self.validate(tx, supplied_amount)
            except ShieldedPoolError as e:
                logger.warning("rejected transaction: %s: %s", type(e).__name__, e)
                raise

            ext_data = tx.ext_data
            payouts = self._payouts(ext_data)
            balance = self.pool_balance + supplied_amount - sum(p.amount for p in payouts)
            if balance < 0:
                raise AmountMismatch("pool balance cannot cover the payouts")

            first_index = self._tree.next_index
            with self._storage.batch() as batch:
                if account is not None:
                    self._put_account(batch, *account)
                self._put_commitments(
                    batch,
                    first_index,
                    tx.commitments,
                    [ext_data.encrypted_output1, ext_data.encrypted_output2],
                )
                self._put_nullifiers(batch, tx.nullifiers)
                self._put_payouts(batch, payouts)
                batch.put(_BALANCE_KEY, cbor2.dumps(balance))
                if message_id is not None:
                    batch.put(BRIDGE_MESSAGES + message_id, b"accepted")
                staged = self._insert(batch, tx.commitments)
            self._tree = staged
            root = staged.root

            logger.info(
                "accepted transaction: %d nullifiers, leaves %d-%d, ext_amount=%d",
                len(tx.nullifiers),
                first_index,
                first_index + len(tx.commitments) - 1,
                ext_data.ext_amount,
            )
            return Receipt(
                status=TransactionStatus.ACCEPTED,
                root=root,
                first_index=first_index,
                commitments=tuple(tx.commitments),
                nullifiers=tuple(tx.nullifiers),
                payouts=tuple(payouts),
            )

    def public_deposit(
        self,
        amount: int,
        pubkey: int,
        supplied_amount: Optional[int] = None,
        message_id: Optional[bytes] = None,
    ) -> Receipt:
        """
        Credit amount to pubkey as a zero-blinding note without a proof.

        The note lands in slot 0 of a two-leaf batch; slot 1 holds the
        commitment of an empty note.

        Raises:
            InvalidAmount: If amount is not a positive int
            InvalidKeyFormat: If pubkey is not a field element
            AmountMismatch: If supplied_amount differs from amount
            LimitExceeded: If amount is above the deposit limit
            TreeFull: If the batch does not fit
        """
        supplied = amount if supplied_amount is None else supplied_amount
        with self._lock:
            try:
                if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
                    raise InvalidAmount(f"public deposit amount must be a positive int, got {amount!r}")
                if isinstance(pubkey, bool) or not isinstance(pubkey, int) or not 0 <= pubkey < FIELD_SIZE:
                    raise InvalidKeyFormat("public deposit pubkey is not a field element")
                if supplied != amount:
                    raise AmountMismatch(f"supplied {supplied}, deposit is {amount}")
                self._check_limits(amount)
                if not self._tree.can_insert(OUTPUT_COUNT):
                    raise TreeFull("commitment tree is full")
            except ShieldedPoolError as e:
                logger.warning("rejected public deposit: %s", e)
                raise

            commitments = (
                self._hasher.hash(amount, pubkey, 0),
                self._hasher.hash(0, 0, 0),
            )
            first_index = self._tree.next_index
            with self._storage.batch() as batch:
                self._put_commitments(batch, first_index, commitments, [b"", b""])
                batch.put(_BALANCE_KEY, cbor2.dumps(self.pool_balance + amount))
                if message_id is not None:
                    batch.put(BRIDGE_MESSAGES + message_id, b"public_deposit")
                staged = self._insert(batch, commitments)
            self._tree = staged
            root = staged.root

            logger.info("public deposit of %d at leaf %d", amount, first_index)
            return Receipt(
                status=TransactionStatus.ACCEPTED,
                root=root,
                first_index=first_index,
                commitments=commitments,
            )

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _check_limits(self, ext_amount: int) -> None:
        if ext_amount > self._limits.maximum_deposit_amount:
            raise LimitExceeded(
                f"deposit {ext_amount} above limit {self._limits.maximum_deposit_amount}"
            )
        if ext_amount < 0 and -ext_amount < self._limits.minimal_withdrawal_amount:
            raise LimitExceeded(
                f"withdrawal {-ext_amount} below minimum "
                f"{self._limits.minimal_withdrawal_amount}"
            )

    @staticmethod
    def _check_settlement(ext_data: ExtData) -> None:
        if ext_data.ext_amount < 0 and is_zero_address(ext_data.recipient):
            raise InvalidExtData("withdrawal needs a recipient")
        if ext_data.is_l1_withdrawal and ext_data.ext_amount >= 0:
            raise InvalidExtData("L1 withdrawal must move value out of the pool")
        if ext_data.fee > 0 and is_zero_address(ext_data.relayer):
            raise InvalidExtData("fee needs a relayer")

    @staticmethod
    def _payouts(ext_data: ExtData) -> List[Payout]:
        payouts = []
        if ext_data.ext_amount < 0:
            payouts.append(
                Payout(
                    kind=PayoutKind.BRIDGE if ext_data.is_l1_withdrawal else PayoutKind.WITHDRAWAL,
                    recipient=normalize_address(ext_data.recipient),
                    amount=-ext_data.ext_amount,
                    l1_fee=ext_data.l1_fee if ext_data.is_l1_withdrawal else 0,
                )
            )
        if ext_data.fee > 0:
            payouts.append(
                Payout(
                    kind=PayoutKind.RELAYER_FEE,
                    recipient=normalize_address(ext_data.relayer),
                    amount=ext_data.fee,
                )
            )
        return payouts

    def _get_int(self, k: bytes, default: int = 0) -> int:
        value = self._storage.get(k)
        return cbor2.loads(value) if value is not None else default

    def _put_limits(self, batch: WriteBatch, limits: LedgerLimits) -> None:
        batch.put(
            _LIMITS_KEY,
            cbor2.dumps(
                {
                    "maximum_deposit_amount": limits.maximum_deposit_amount,
                    "minimal_withdrawal_amount": limits.minimal_withdrawal_amount,
                }
            ),
        )

    def _put_account(self, batch: WriteBatch, owner: str, address: str) -> PublicKey:
        owner = normalize_address(owner)
        Keypair.from_address(address, hasher=self._hasher)
        batch.put(ACCOUNTS + owner.encode(), address.encode())
        return PublicKey(owner=owner, key=address)

    def _put_commitments(
        self,
        batch: WriteBatch,
        first_index: int,
        commitments: Iterable[int],
        encrypted_outputs: Iterable[bytes],
    ) -> None:
        for offset, (commitment, encrypted) in enumerate(zip(commitments, encrypted_outputs)):
            record = {"c": to_field_bytes(commitment), "enc": bytes(encrypted)}
            batch.put(COMMITMENTS + be_u64(first_index + offset), cbor2.dumps(record))

    def _put_nullifiers(self, batch: WriteBatch, nullifiers: Iterable[int]) -> None:
        seq = self._get_int(_NULLIFIER_SEQ_KEY)
        for nullifier in nullifiers:
            encoded = to_field_bytes(nullifier)
            batch.put(NULLIFIERS + encoded, _SPENT)
            batch.put(NULLIFIER_EVENTS + be_u64(seq), encoded)
            seq += 1
        batch.put(_NULLIFIER_SEQ_KEY, cbor2.dumps(seq))

    def _put_payouts(self, batch: WriteBatch, payouts: Iterable[Payout]) -> None:
        seq = self._get_int(_OUTBOX_SEQ_KEY)
        for payout in payouts:
            batch.put(OUTBOX + be_u64(seq), cbor2.dumps(payout.to_dict()))
            seq += 1
        batch.put(_OUTBOX_SEQ_KEY, cbor2.dumps(seq))

    def _insert(self, batch: WriteBatch, commitments: Tuple[int, ...]) -> MerkleAccumulator:
        """
        Insert into a copy of the tree and record the new root in batch.

        The live tree is untouched; the caller swaps the returned copy in
        once the batch has committed.
        """
        staged = self._tree.copy()
        root = staged.insert_batch(commitments)
        seq = self._get_int(_ROOT_SEQ_KEY)
        batch.put(ROOTS + be_u64(seq), to_field_bytes(root))
        batch.put(_ROOT_SEQ_KEY, cbor2.dumps(seq + 1))
        if seq >= self._root_history_size:
            batch.delete(ROOTS + be_u64(seq - self._root_history_size))
        return staged


__all__ = [
    "LedgerLimits",
    "LedgerState",
    "NewCommitment",
    "NewNullifier",
    "Payout",
    "PayoutKind",
    "PublicKey",
    "Receipt",
]
