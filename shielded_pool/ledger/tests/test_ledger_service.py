from __future__ import annotations

import dataclasses

import pytest
import trio

from shielded_pool.ledger.service import LedgerService, transaction_id
from shielded_pool.ledger.state import LedgerState
from shielded_pool.protocol.adapters.mock_adapter import MockProofSystem
from shielded_pool.protocol.assembler import TransactionAssembler
from shielded_pool.protocol.exceptions import DoubleSpend, InvalidProof
from shielded_pool.protocol.keypair import Keypair
from shielded_pool.protocol.note import Note
from shielded_pool.protocol.types import TransactionStatus

HEIGHT = 5


def _service() -> LedgerService:
    ledger = LedgerState(verifier=MockProofSystem(), height=HEIGHT)
    return LedgerService(ledger, TransactionAssembler(prover=MockProofSystem()))


@pytest.mark.trio
async def test_prove_and_submit() -> None:
    service = _service()
    prepared = TransactionAssembler().prepare(
        service.ledger.tree_snapshot(), outputs=[Note(amount=42, keypair=Keypair())]
    )
    tx = await service.prove(prepared)
    receipt = await service.submit(tx, supplied_amount=42)

    assert receipt.status is TransactionStatus.ACCEPTED
    assert service.status(transaction_id(tx)) is TransactionStatus.ACCEPTED
    assert service.ledger.pool_balance == 42


@pytest.mark.trio
async def test_rejection_is_recorded() -> None:
    service = _service()
    prepared = TransactionAssembler().prepare(
        service.ledger.tree_snapshot(), outputs=[Note(amount=1, keypair=Keypair())]
    )
    tx = dataclasses.replace(await service.prove(prepared), proof=b"\x01" * 32)

    with pytest.raises(InvalidProof):
        await service.submit(tx, supplied_amount=1)
    assert service.status(transaction_id(tx)) is TransactionStatus.REJECTED
    assert service.ledger.size == 0


@pytest.mark.trio
async def test_concurrent_submissions_of_one_spend() -> None:
    service = _service()
    owner = Keypair()
    note = Note(amount=10, keypair=owner)
    deposit = await service.prove(
        TransactionAssembler().prepare(service.ledger.tree_snapshot(), outputs=[note])
    )
    await service.submit(deposit, supplied_amount=10)

    snapshot = service.ledger.tree_snapshot()
    spends = [
        await service.prove(
            TransactionAssembler().prepare(
                snapshot, inputs=[note], outputs=[Note(amount=10, keypair=Keypair())]
            )
        )
        for _ in range(2)
    ]
    outcomes = []

    async def submit(tx):
        try:
            await service.submit(tx)
            outcomes.append("accepted")
        except DoubleSpend:
            outcomes.append("double-spend")

    async with trio.open_nursery() as nursery:
        for tx in spends:
            nursery.start_soon(submit, tx)

    assert sorted(outcomes) == ["accepted", "double-spend"]
    assert service.ledger.pool_balance == 10


@pytest.mark.trio
async def test_prove_without_assembler() -> None:
    service = LedgerService(LedgerState(verifier=MockProofSystem(), height=HEIGHT))
    prepared = TransactionAssembler().prepare(
        service.ledger.tree_snapshot(), outputs=[Note(amount=1, keypair=Keypair())]
    )
    with pytest.raises(RuntimeError):
        await service.prove(prepared)
