"""
Destination-domain bridge reconciliation.

Inbound: bridged funds arrive with an encoded shielded deposit. The deposit
is applied to the ledger only if it decodes, matches the bridged amount and
passes every ledger check; otherwise the funds go to the fallback custodian
and the ledger is left as it was. Each message is handled at most once.

Outbound: L1 withdrawals accepted by the ledger wait in its outbox until
relay_withdrawals() hands them to the bridge channel.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional

import cbor2

from ..ledger.state import LedgerState, Payout, PayoutKind, Receipt
from ..protocol.exceptions import AmountMismatch, ShieldedPoolError, UnsupportedToken
from .channel import BridgeCall, BridgeChannel
from .messages import BridgePayload, DeliveryStatus, compute_message_id
from .unwrapper import FallbackCustodian

logger = logging.getLogger(__name__)

DEFAULT_TOKEN = "WETH"


@dataclass(frozen=True)
class ReconcileResult:
    status: DeliveryStatus
    message_id: bytes
    receipt: Optional[Receipt] = None
    reason: Optional[str] = None


class BridgeReconciler:
    """
    Connects a LedgerState to a bridge.

    Args:
        ledger: Pool ledger; also stores processed message ids
        custodian: Receives inbound funds that cannot be applied
        channel: Outbound channel for L1 withdrawals
        token: The only token the pool accepts

    Example:
        >>> reconciler = BridgeReconciler(ledger, custodian, channel)
        >>> result = reconciler.on_funds_bridged("WETH", 100, payload)
        >>> result.status
        <DeliveryStatus.ACCEPTED: 'accepted'>
    """

    def __init__(
        self,
        ledger: LedgerState,
        custodian: FallbackCustodian,
        channel: Optional[BridgeChannel] = None,
        token: str = DEFAULT_TOKEN,
    ) -> None:
        self.ledger = ledger
        self.custodian = custodian
        self.channel = channel
        self.token = token
        self._lock = threading.Lock()

    def _fallback(self, message_id: bytes, token: str, amount: int, error: Exception) -> ReconcileResult:
        reason = f"{type(error).__name__}: {error}"
        logger.warning("diverting bridged funds to custodian: %s", reason)
        self.custodian.credit(message_id, token, amount, reason)
        self.ledger.mark_message_processed(message_id, DeliveryStatus.FALLBACK.value)
        return ReconcileResult(DeliveryStatus.FALLBACK, message_id, reason=reason)

    def _duplicate(self, message_id: bytes) -> ReconcileResult:
        logger.info("ignoring replayed bridge message %s", message_id.hex()[:16])
        return ReconcileResult(
            DeliveryStatus.DUPLICATE,
            message_id,
            reason=self.ledger.get_message_outcome(message_id),
        )

    def on_funds_bridged(
        self,
        token: str,
        amount: int,
        payload: bytes,
        message_id: Optional[bytes] = None,
    ) -> ReconcileResult:
        """
        Apply a bridged shielded deposit, or hand the funds to the custodian.

        Errors outside the pool's own hierarchy propagate and leave the
        message unprocessed so that redelivery retries it.
        """
        if message_id is None:
            message_id = compute_message_id(token, amount, payload)

        with self._lock:
            if self.ledger.is_message_processed(message_id):
                return self._duplicate(message_id)

            try:
                if token != self.token:
                    raise UnsupportedToken(f"token {token!r} is not {self.token!r}")
                decoded = BridgePayload.decode(payload)
                ext_amount = decoded.tx.ext_data.ext_amount
                if ext_amount != amount:
                    raise AmountMismatch(
                        f"bridged {amount} but transaction deposits {ext_amount}"
                    )
                receipt = self.ledger.accept(
                    decoded.tx,
                    supplied_amount=amount,
                    account=decoded.account,
                    message_id=message_id,
                )
            except ShieldedPoolError as e:
                return self._fallback(message_id, token, amount, e)

            logger.info("bridged deposit of %d %s applied", amount, token)
            return ReconcileResult(DeliveryStatus.ACCEPTED, message_id, receipt=receipt)

    def on_public_deposit(
        self,
        token: str,
        amount: int,
        pubkey: int,
        message_id: Optional[bytes] = None,
    ) -> ReconcileResult:
        """Credit bridged funds to pubkey without a proof."""
        if message_id is None:
            message_id = compute_message_id(token, amount, cbor2.dumps(pubkey))

        with self._lock:
            if self.ledger.is_message_processed(message_id):
                return self._duplicate(message_id)
            try:
                if token != self.token:
                    raise UnsupportedToken(f"token {token!r} is not {self.token!r}")
                receipt = self.ledger.public_deposit(amount, pubkey, message_id=message_id)
            except ShieldedPoolError as e:
                return self._fallback(message_id, token, amount, e)
            return ReconcileResult(DeliveryStatus.ACCEPTED, message_id, receipt=receipt)

    def relay_withdrawals(self) -> List[BridgeCall]:
        """
        Send pending L1 withdrawals to the bridge channel.

        A withdrawal stays in the ledger outbox until the channel has taken
        it, so a channel failure leaves the rest queued for the next call.
        """
        channel = self.channel
        if channel is None:
            raise RuntimeError("reconciler has no bridge channel")

        def relay(payout: Payout) -> BridgeCall:
            try:
                call = channel.send_to_bridge(payout.recipient, payout.amount, payout.l1_fee)
            except Exception as e:
                logger.warning(
                    "bridge channel refused L1 withdrawal of %d to %s: %s",
                    payout.amount,
                    payout.recipient,
                    e,
                )
                raise
            logger.info("relayed L1 withdrawal of %d to %s", payout.amount, payout.recipient)
            return call

        return self.ledger.settle_payouts(relay, [PayoutKind.BRIDGE])
