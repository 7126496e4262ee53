"""
Unit tests for the ledger state machine.
"""

from __future__ import annotations

import dataclasses

import pytest

from shielded_pool.ledger.state import LedgerLimits, LedgerState, PayoutKind
from shielded_pool.ledger.storage import InMemoryStore
from shielded_pool.protocol.adapters.mock_adapter import MockProofSystem
from shielded_pool.protocol.assembler import TransactionAssembler
from shielded_pool.protocol.config import FIELD_SIZE
from shielded_pool.protocol.exceptions import (
    AmountMismatch,
    DoubleSpend,
    InvalidAmount,
    InvalidExtData,
    InvalidKeyFormat,
    InvalidProof,
    LimitExceeded,
    StaleOrUnknownRoot,
    TreeFull,
)
from shielded_pool.protocol.keypair import Keypair
from shielded_pool.protocol.merkle import MerkleAccumulator
from shielded_pool.protocol.note import Note

HEIGHT = 5
RECIPIENT = "0x" + "11" * 20
RELAYER = "0x" + "22" * 20


@pytest.fixture
def ledger() -> LedgerState:
    return LedgerState(verifier=MockProofSystem(), height=HEIGHT)


@pytest.fixture
def assembler() -> TransactionAssembler:
    return TransactionAssembler(prover=MockProofSystem())


def _deposit(ledger, assembler, keypair, amount):
    note = Note(amount=amount, keypair=keypair)
    tx = assembler.build(ledger.tree_snapshot(), outputs=[note])
    ledger.accept(tx, supplied_amount=amount)
    return note


def _state(ledger):
    return (ledger.root, ledger.size, ledger.pool_balance, len(ledger.get_nullifier_events()))


class TestDeposit:
    """Shielded deposits."""

    def test_deposit_is_applied(self, ledger, assembler):
        owner = Keypair()
        note = Note(amount=100, keypair=owner)
        tx = assembler.build(ledger.tree_snapshot(), outputs=[note])

        receipt = ledger.accept(tx, supplied_amount=100)

        assert receipt.first_index == 0
        assert receipt.root == ledger.root
        assert ledger.size == 2
        assert ledger.pool_balance == 100
        assert note.commitment() in ledger.get_committed_leaves()
        assert all(ledger.is_nullifier_spent(n) for n in tx.nullifiers)
        events = ledger.get_commitment_events()
        assert [e.index for e in events] == [0, 1]
        assert {e.encrypted_output for e in events} == {
            tx.ext_data.encrypted_output1,
            tx.ext_data.encrypted_output2,
        }

    def test_supplied_amount_must_match(self, ledger, assembler):
        tx = assembler.build(
            ledger.tree_snapshot(), outputs=[Note(amount=100, keypair=Keypair())]
        )
        before = _state(ledger)
        with pytest.raises(AmountMismatch):
            ledger.accept(tx, supplied_amount=99)
        assert _state(ledger) == before
        assert not any(ledger.is_nullifier_spent(n) for n in tx.nullifiers)

    def test_deposit_limit(self, ledger, assembler):
        ledger.configure_limits(maximum_deposit_amount=50)
        tx = assembler.build(
            ledger.tree_snapshot(), outputs=[Note(amount=100, keypair=Keypair())]
        )
        with pytest.raises(LimitExceeded):
            ledger.accept(tx, supplied_amount=100)
        assert ledger.size == 0


class TestSpending:
    """Transfers, withdrawals and the checks guarding them."""

    def test_transfer_then_double_spend(self, ledger, assembler):
        alice, bob = Keypair(), Keypair()
        note = _deposit(ledger, assembler, alice, 100)

        tx = assembler.build(
            ledger.tree_snapshot(),
            inputs=[note],
            outputs=[Note(amount=30, keypair=bob), Note(amount=70, keypair=alice)],
        )
        ledger.accept(tx)
        assert ledger.pool_balance == 100
        assert ledger.size == 4

        with pytest.raises(DoubleSpend):
            ledger.accept(tx)

        again = assembler.build(
            ledger.tree_snapshot(),
            inputs=[note],
            outputs=[Note(amount=100, keypair=bob)],
        )
        with pytest.raises(DoubleSpend):
            ledger.accept(again)

    def test_duplicate_nullifier_within_transaction(self, ledger, assembler):
        tx = assembler.build(
            ledger.tree_snapshot(), outputs=[Note(amount=1, keypair=Keypair())]
        )
        nullifier = tx.nullifiers[0]
        public_inputs = dataclasses.replace(
            tx.public_inputs, input_nullifiers=(nullifier, nullifier)
        )
        with pytest.raises(DoubleSpend, match="twice"):
            ledger.accept(dataclasses.replace(tx, public_inputs=public_inputs), supplied_amount=1)

    def test_withdrawal_with_fee_fills_outbox(self, ledger, assembler):
        alice = Keypair()
        note = _deposit(ledger, assembler, alice, 100)
        tx = assembler.build(
            ledger.tree_snapshot(),
            inputs=[note],
            outputs=[Note(amount=60, keypair=alice)],
            fee=5,
            recipient=RECIPIENT,
            relayer=RELAYER,
        )
        assert tx.ext_data.ext_amount == -35

        receipt = ledger.accept(tx)

        assert ledger.pool_balance == 60
        kinds = {p.kind: p for p in receipt.payouts}
        assert kinds[PayoutKind.WITHDRAWAL].amount == 35
        assert kinds[PayoutKind.WITHDRAWAL].recipient == RECIPIENT
        assert kinds[PayoutKind.RELAYER_FEE].amount == 5
        assert kinds[PayoutKind.RELAYER_FEE].recipient == RELAYER

        assert ledger.drain_outbox() == list(receipt.payouts)
        assert ledger.drain_outbox() == []

    def test_l1_withdrawal_targets_bridge(self, ledger, assembler):
        alice = Keypair()
        note = _deposit(ledger, assembler, alice, 100)
        tx = assembler.build(
            ledger.tree_snapshot(),
            inputs=[note],
            recipient=RECIPIENT,
            is_l1_withdrawal=True,
            l1_fee=3,
        )
        receipt = ledger.accept(tx)
        (payout,) = receipt.payouts
        assert payout.kind is PayoutKind.BRIDGE
        assert payout.amount == 100
        assert payout.l1_fee == 3
        assert ledger.pool_balance == 0

    def test_withdrawal_cannot_carry_funds(self, ledger, assembler):
        alice = Keypair()
        note = _deposit(ledger, assembler, alice, 100)
        tx = assembler.build(ledger.tree_snapshot(), inputs=[note], recipient=RECIPIENT)
        with pytest.raises(AmountMismatch):
            ledger.accept(tx, supplied_amount=100)

    def test_minimal_withdrawal(self, ledger, assembler):
        alice = Keypair()
        note = _deposit(ledger, assembler, alice, 100)
        ledger.configure_limits(minimal_withdrawal_amount=50)
        tx = assembler.build(
            ledger.tree_snapshot(),
            inputs=[note],
            outputs=[Note(amount=90, keypair=alice)],
            recipient=RECIPIENT,
        )
        with pytest.raises(LimitExceeded, match="below minimum"):
            ledger.accept(tx)

    def test_tampered_ext_data_rejected(self, ledger, assembler):
        alice = Keypair()
        note = _deposit(ledger, assembler, alice, 100)
        tx = assembler.build(ledger.tree_snapshot(), inputs=[note], recipient=RECIPIENT)
        redirected = dataclasses.replace(
            tx, ext_data=dataclasses.replace(tx.ext_data, recipient=RELAYER)
        )
        with pytest.raises(InvalidExtData):
            ledger.accept(redirected)
        assert not any(ledger.is_nullifier_spent(n) for n in tx.nullifiers)

    def test_invalid_proof_rejected(self, ledger, assembler):
        tx = assembler.build(
            ledger.tree_snapshot(), outputs=[Note(amount=10, keypair=Keypair())]
        )
        before = _state(ledger)
        with pytest.raises(InvalidProof):
            ledger.accept(dataclasses.replace(tx, proof=b"\x00" * 32), supplied_amount=10)
        assert _state(ledger) == before


class TestRootHistory:
    """Proofs against recent roots."""

    def test_recent_root_accepted(self, assembler):
        ledger = LedgerState(verifier=MockProofSystem(), height=HEIGHT, root_history_size=3)
        alice = Keypair()
        note = _deposit(ledger, assembler, alice, 100)
        tx = assembler.build(ledger.tree_snapshot(), inputs=[note], recipient=RECIPIENT)

        _deposit(ledger, assembler, Keypair(), 1)
        assert ledger.root != tx.root
        ledger.accept(tx)

    def test_evicted_root_rejected(self, assembler):
        ledger = LedgerState(verifier=MockProofSystem(), height=HEIGHT, root_history_size=2)
        alice = Keypair()
        note = _deposit(ledger, assembler, alice, 100)
        tx = assembler.build(ledger.tree_snapshot(), inputs=[note], recipient=RECIPIENT)

        _deposit(ledger, assembler, Keypair(), 1)
        _deposit(ledger, assembler, Keypair(), 1)
        assert tx.root not in ledger.get_known_roots()
        with pytest.raises(StaleOrUnknownRoot):
            ledger.accept(tx)

    def test_zero_root_is_never_known(self, ledger):
        assert not ledger.is_known_root(0)
        assert ledger.get_known_roots() == [ledger.root]


def test_tree_full(assembler):
    ledger = LedgerState(verifier=MockProofSystem(), height=1)
    snapshot = ledger.tree_snapshot()
    first = assembler.build(snapshot, outputs=[Note(amount=1, keypair=Keypair())])
    second = assembler.build(snapshot, outputs=[Note(amount=1, keypair=Keypair())])
    ledger.accept(first, supplied_amount=1)
    with pytest.raises(TreeFull):
        ledger.accept(second, supplied_amount=1)


def test_public_deposit_is_spendable(ledger, assembler):
    alice = Keypair()
    receipt = ledger.public_deposit(500, alice.pubkey)
    assert receipt.first_index == 0
    assert ledger.pool_balance == 500
    assert receipt.commitments[1] == ledger.hasher.hash(0, 0, 0)

    note = Note(amount=500, keypair=alice, blinding=0)
    tx = assembler.build(ledger.tree_snapshot(), inputs=[note], recipient=RECIPIENT)
    ledger.accept(tx)
    assert ledger.pool_balance == 0


def test_public_deposit_checks(ledger):
    with pytest.raises(AmountMismatch):
        ledger.public_deposit(500, Keypair().pubkey, supplied_amount=400)
    with pytest.raises(InvalidAmount):
        ledger.public_deposit(0, Keypair().pubkey)
    with pytest.raises(InvalidKeyFormat):
        ledger.public_deposit(500, FIELD_SIZE + 1)
    with pytest.raises(InvalidKeyFormat):
        ledger.public_deposit(500, 2**300)
    ledger.configure_limits(maximum_deposit_amount=100)
    with pytest.raises(LimitExceeded):
        ledger.public_deposit(101, Keypair().pubkey)
    assert ledger.size == 0


def test_failed_apply_leaves_storage_untouched(ledger, assembler, monkeypatch):
    tx = assembler.build(
        ledger.tree_snapshot(), outputs=[Note(amount=10, keypair=Keypair())]
    )
    before = len(ledger.storage)

    def broken_insert(self, commitments):
        raise RuntimeError("disk gone")

    monkeypatch.setattr(MerkleAccumulator, "insert_batch", broken_insert)
    with pytest.raises(RuntimeError):
        ledger.accept(tx, supplied_amount=10)
    assert len(ledger.storage) == before
    assert not any(ledger.is_nullifier_spent(n) for n in tx.nullifiers)


class FailingStore(InMemoryStore):
    """Store whose batch commit can be made to fail."""

    def __init__(self):
        super().__init__()
        self.broken = False

    def _apply(self, ops):
        if self.broken:
            raise OSError("write failed")
        super()._apply(ops)


class TestCommitFailure:
    """A failed storage commit must leave the in-memory state as it was."""

    @pytest.fixture
    def store(self):
        return FailingStore()

    @pytest.fixture
    def ledger(self, store):
        return LedgerState(verifier=MockProofSystem(), storage=store, height=HEIGHT)

    def test_accept(self, ledger, store, assembler):
        alice = Keypair()
        note = _deposit(ledger, assembler, alice, 100)
        tx = assembler.build(
            ledger.tree_snapshot(),
            inputs=[note],
            outputs=[Note(amount=100, keypair=Keypair())],
        )
        before = _state(ledger)
        roots = ledger.get_known_roots()

        store.broken = True
        with pytest.raises(OSError):
            ledger.accept(tx)

        assert _state(ledger) == before
        assert ledger.get_known_roots() == roots
        assert not ledger.is_nullifier_spent(note.nullifier())

        store.broken = False
        receipt = ledger.accept(tx)
        assert receipt.first_index == 2
        assert ledger.is_nullifier_spent(note.nullifier())

    def test_public_deposit(self, ledger, store):
        before = _state(ledger)
        store.broken = True
        with pytest.raises(OSError):
            ledger.public_deposit(50, Keypair().pubkey)
        assert _state(ledger) == before

        store.broken = False
        assert ledger.public_deposit(50, Keypair().pubkey).first_index == 0


def test_payout_stays_queued_until_delivered(ledger, assembler):
    alice = Keypair()
    note = _deposit(ledger, assembler, alice, 100)
    tx = assembler.build(
        ledger.tree_snapshot(),
        inputs=[note],
        outputs=[Note(amount=40, keypair=alice)],
        recipient=RECIPIENT,
    )
    ledger.accept(tx)

    def refuse(payout):
        raise ConnectionError("bridge down")

    with pytest.raises(ConnectionError):
        ledger.settle_payouts(refuse)
    (pending,) = ledger.pending_payouts()
    assert pending.amount == 60

    assert ledger.settle_payouts(lambda payout: payout.amount) == [60]
    assert ledger.pending_payouts() == []


def test_state_survives_restart(assembler):
    store = InMemoryStore()
    first = LedgerState(
        verifier=MockProofSystem(),
        storage=store,
        height=HEIGHT,
        limits=LedgerLimits(maximum_deposit_amount=1_000),
    )
    alice = Keypair()
    note = _deposit(first, assembler, alice, 100)
    first.register_account(RECIPIENT, alice.address())

    second = LedgerState(verifier=MockProofSystem(), storage=store, height=HEIGHT)
    assert second.root == first.root
    assert second.get_known_roots() == first.get_known_roots()
    assert second.pool_balance == 100
    assert second.limits.maximum_deposit_amount == 1_000
    assert second.get_account(RECIPIENT) == alice.address()

    tx = assembler.build(second.tree_snapshot(), inputs=[note], recipient=RECIPIENT)
    second.accept(tx)
    assert second.pool_balance == 0


def test_register_account(ledger):
    alice = Keypair()
    event = ledger.register_account("0x" + "aB" * 20, alice.address())
    assert event.owner == "0x" + "ab" * 20
    assert ledger.get_public_key_events() == [event]
    with pytest.raises(InvalidKeyFormat):
        ledger.register_account(RELAYER, "0x1234")
    assert ledger.get_account(RELAYER) is None
