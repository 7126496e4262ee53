"""
End-to-end scenarios across wallet, ledger and bridge.

Runs against an in-memory ledger with the mock proof system; fast enough
for CI.
"""
import pytest
import trio

from shielded_pool.bridge import (
    BridgePayload,
    BridgeReconciler,
    DeliveryStatus,
    FallbackCustodian,
    InMemoryBridgeChannel,
    L1Unwrapper,
)
from shielded_pool.client import ShieldedWallet
from shielded_pool.ledger import LedgerService, LedgerState
from shielded_pool.protocol.adapters.mock_adapter import MockProofSystem
from shielded_pool.protocol.assembler import TransactionAssembler
from shielded_pool.protocol.config import FIELD_SIZE
from shielded_pool.protocol.exceptions import DoubleSpend
from shielded_pool.protocol.keypair import Keypair
from shielded_pool.protocol.note import Note

HEIGHT = 5
RECIPIENT = "0x" + "11" * 20
MULTISIG = "0x" + "99" * 20


def _balance_holds(prepared):
    witness = prepared.witness
    lhs = (sum(witness.input_amounts) + witness.public_amount) % FIELD_SIZE
    rhs = (sum(witness.output_amounts) + witness.fee) % FIELD_SIZE
    return lhs == rhs


def test_deposit_transfer_l1_withdrawal():
    """Deposit 10M, send 3M, withdraw 2M of it across the bridge."""
    print("\n" + "=" * 60)
    print("Deposit -> transfer -> L1 withdrawal")
    print("=" * 60)

    proof_system = MockProofSystem()
    ledger = LedgerState(verifier=proof_system, height=HEIGHT)
    channel = InMemoryBridgeChannel()
    reconciler = BridgeReconciler(ledger, FallbackCustodian(MULTISIG), channel)
    assembler = TransactionAssembler(prover=proof_system)
    alice = ShieldedWallet(ledger, assembler=assembler)
    bob = ShieldedWallet(ledger, assembler=assembler)

    print("\n1. Deposit 10,000,000 with 0 inputs / 2 outputs...")
    alice.deposit(10_000_000)
    assert ledger.size == 2
    alice.sync()
    (deposited,) = alice.unspent_notes()
    assert deposited.amount == 10_000_000
    assert len(ledger.get_nullifier_events()) == 2

    print("2. Send 3,000,000 to Bob, 7,000,000 change...")
    receipt = alice.transfer(bob.address, 3_000_000)
    assert ledger.is_nullifier_spent(deposited.nullifier())
    assert len(receipt.commitments) == 2
    assert ledger.size == 4
    assert bob.balance() == 3_000_000
    assert alice.balance() == 7_000_000
    spent_before = len(ledger.get_nullifier_events())

    print("3. Bob withdraws 2,000,000 to L1...")
    (bob_note,) = bob.unspent_notes()
    bob.withdraw(2_000_000, RECIPIENT, is_l1_withdrawal=True)
    assert ledger.is_nullifier_spent(bob_note.nullifier())
    assert len(ledger.get_nullifier_events()) == spent_before + 2

    calls = reconciler.relay_withdrawals()
    assert [(c.recipient, c.amount, c.fee) for c in calls] == [(RECIPIENT, 2_000_000, 0)]

    unwrapper = L1Unwrapper(FallbackCustodian(MULTISIG))
    assert channel.deliver(unwrapper) == [DeliveryStatus.ACCEPTED]
    assert unwrapper.balances == {RECIPIENT: 2_000_000}

    assert bob.balance() == 1_000_000
    assert ledger.pool_balance == 8_000_000
    print("✓ Scenario complete")


def test_sixteen_input_merge_matches_two_input_path():
    """Zero-padded 16-input transactions keep the balance equation."""
    ledger = LedgerState(verifier=MockProofSystem(), height=HEIGHT)
    assembler = TransactionAssembler(prover=MockProofSystem())
    owner = Keypair()
    tree = ledger.tree_snapshot()

    padding = [Note.zero() for _ in range(16)]
    wide = assembler.prepare(tree, inputs=padding, outputs=[Note(amount=500, keypair=owner)])
    narrow = assembler.prepare(tree, outputs=[Note(amount=500, keypair=owner)])

    assert len(wide.witness.input_amounts) == 16
    assert len(narrow.witness.input_amounts) == 2
    assert wide.ext_data.ext_amount == narrow.ext_data.ext_amount == 500
    assert _balance_holds(wide) and _balance_holds(narrow)

    ledger.accept(assembler.prove(wide), supplied_amount=500)
    assert ledger.pool_balance == 500
    assert len(ledger.get_nullifier_events()) == 16


def test_bridged_deposit_then_replay():
    ledger = LedgerState(verifier=MockProofSystem(), height=HEIGHT)
    reconciler = BridgeReconciler(ledger, FallbackCustodian(MULTISIG), InMemoryBridgeChannel())
    alice = ShieldedWallet(ledger, assembler=TransactionAssembler(prover=MockProofSystem()))
    tx = alice.assembler.build(
        ledger.tree_snapshot(), outputs=[Note(amount=1_000, keypair=alice.keypair)]
    )
    payload = BridgePayload(tx=tx, account=(RECIPIENT, alice.address)).encode()

    first = reconciler.on_funds_bridged("WETH", 1_000, payload)
    second = reconciler.on_funds_bridged("WETH", 1_000, payload)

    assert first.status is DeliveryStatus.ACCEPTED
    assert second.status is DeliveryStatus.DUPLICATE
    assert alice.balance() == 1_000
    assert ledger.get_account(RECIPIENT) == alice.address
    assert reconciler.custodian.held() == 0


@pytest.mark.trio
async def test_racing_spenders_through_service():
    """Two builders race to spend one note; exactly one wins."""
    ledger = LedgerState(verifier=MockProofSystem(), height=HEIGHT)
    assembler = TransactionAssembler(prover=MockProofSystem())
    service = LedgerService(ledger, assembler)
    alice = ShieldedWallet(ledger, assembler=assembler)
    alice.deposit(100)
    alice.sync()
    (note,) = alice.unspent_notes()

    snapshot = ledger.tree_snapshot()
    txs = [
        await service.prove(
            assembler.prepare(snapshot, inputs=[note], outputs=[Note(amount=100, keypair=Keypair())])
        )
        for _ in range(2)
    ]
    results = []

    async def submit(tx):
        try:
            await service.submit(tx)
            results.append(True)
        except DoubleSpend:
            results.append(False)

    async with trio.open_nursery() as nursery:
        for tx in txs:
            nursery.start_soon(submit, tx)

    assert sorted(results) == [False, True]
    assert alice.balance() == 0
