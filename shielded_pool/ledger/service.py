"""
Async front end for the ledger.

Proving and verification are CPU-bound, so they run in worker threads; the
trio lock serialises submissions so that validation and application of one
transaction never interleave with another.
"""

from __future__ import annotations

import hashlib
import logging
import time
from typing import Dict, Optional, Tuple

import trio

from ..protocol.assembler import TransactionAssembler
from ..protocol.exceptions import ShieldedPoolError
from ..protocol.types import PreparedTransaction, ShieldedTransaction, TransactionStatus
from .state import LedgerState, Receipt

logger = logging.getLogger(__name__)


def transaction_id(tx: ShieldedTransaction) -> str:
    return hashlib.sha3_256(tx.serialize()).hexdigest()


class LedgerService:
    """
    Serialised, status-tracking submission queue over a LedgerState.

    Example:
        >>> service = LedgerService(ledger, assembler)
        >>> tx = await service.prove(prepared)
        >>> receipt = await service.submit(tx, supplied_amount=100)
        >>> service.status(transaction_id(tx))
        <TransactionStatus.ACCEPTED: 'accepted'>
    """

    def __init__(
        self,
        ledger: LedgerState,
        assembler: Optional[TransactionAssembler] = None,
    ) -> None:
        self._ledger = ledger
        self._assembler = assembler
        self._lock = trio.Lock()
        self._statuses: Dict[str, TransactionStatus] = {}

    @property
    def ledger(self) -> LedgerState:
        return self._ledger

    def status(self, tx_id: str) -> Optional[TransactionStatus]:
        return self._statuses.get(tx_id)

    async def prove(self, prepared: PreparedTransaction) -> ShieldedTransaction:
        """Run the assembler's prover in a worker thread."""
        if self._assembler is None:
            raise RuntimeError("service has no assembler")
        return await trio.to_thread.run_sync(
            self._assembler.prove, prepared, abandon_on_cancel=True
        )

    async def submit(
        self,
        tx: ShieldedTransaction,
        supplied_amount: int = 0,
        account: Optional[Tuple[str, str]] = None,
        message_id: Optional[bytes] = None,
    ) -> Receipt:
        """
        Verify and apply tx.

        Status moves SUBMITTED -> VERIFIED -> ACCEPTED, or to REJECTED on
        the first failing check; the rejection is re-raised.
        """
        tx_id = transaction_id(tx)
        self._statuses[tx_id] = TransactionStatus.SUBMITTED
        start = time.time()

        async with self._lock:
            try:
                await trio.to_thread.run_sync(
                    self._ledger.validate, tx, supplied_amount
                )
                self._statuses[tx_id] = TransactionStatus.VERIFIED
                receipt = await trio.to_thread.run_sync(
                    lambda: self._ledger.accept(
                        tx,
                        supplied_amount=supplied_amount,
                        account=account,
                        message_id=message_id,
                    )
                )
            except ShieldedPoolError:
                self._statuses[tx_id] = TransactionStatus.REJECTED
                raise

        self._statuses[tx_id] = TransactionStatus.ACCEPTED
        logger.info(
            "transaction %s accepted in %.2f ms", tx_id[:16], (time.time() - start) * 1000
        )
        return receipt
