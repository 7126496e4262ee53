"""
Origin-domain side of outbound withdrawals.

The bridge hands the unwrapper the withdrawn amount together with call data
naming the recipient and the L1 fee. The fee goes to the fee receiver, or
accrues in limbo until one is configured; the remainder goes to the
recipient. Anything that cannot be delivered is parked with the fallback
custodian.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Tuple

from ..protocol.exceptions import AmountMismatch, BridgeError, ShieldedPoolError
from ..protocol.types import normalize_address
from .messages import DeliveryStatus, decode_unwrap_data

logger = logging.getLogger(__name__)

Transfer = Callable[[str, int], None]


@dataclass(frozen=True)
class CustodialCredit:
    message_id: bytes
    token: str
    amount: int
    reason: str


class FallbackCustodian:
    """
    Holds funds that could not be delivered, keyed by message id.

    Crediting the same message twice is a no-op.
    """

    def __init__(self, owner: str) -> None:
        self.owner = normalize_address(owner)
        self._credits: Dict[bytes, CustodialCredit] = {}
        self._lock = threading.Lock()
        self.rescued: List[Tuple[str, CustodialCredit]] = []

    def credit(self, message_id: bytes, token: str, amount: int, reason: str) -> bool:
        with self._lock:
            if message_id in self._credits:
                return False
            self._credits[message_id] = CustodialCredit(message_id, token, amount, reason)
        logger.warning("custodian holds %d %s: %s", amount, token, reason)
        return True

    def held(self, token: Optional[str] = None) -> int:
        with self._lock:
            return sum(
                c.amount for c in self._credits.values() if token is None or c.token == token
            )

    def credits(self) -> List[CustodialCredit]:
        with self._lock:
            return list(self._credits.values())

    def rescue(self, message_id: bytes, to: str) -> CustodialCredit:
        """
        Release held funds for message_id to an address.

        Raises:
            BridgeError: If nothing is held for message_id
        """
        to = normalize_address(to)
        with self._lock:
            credit = self._credits.pop(message_id, None)
            if credit is None:
                raise BridgeError("no funds held for message")
            self.rescued.append((to, credit))
        logger.info("custodian released %d %s to %s", credit.amount, credit.token, to)
        return credit


class L1Unwrapper:
    """
    Receives bridged withdrawals and pays recipient and fee receiver.

    Args:
        custodian: Destination for undeliverable funds
        fee_receiver: Address paid the L1 fee; fees accrue in limbo when unset
        transfer: Native transfer function (address, amount); defaults to
            crediting an in-memory balance table
        token: Name of the native token for custodial records
    """

    def __init__(
        self,
        custodian: FallbackCustodian,
        fee_receiver: Optional[str] = None,
        transfer: Optional[Transfer] = None,
        token: str = "ETH",
    ) -> None:
        self.custodian = custodian
        self.fee_receiver = normalize_address(fee_receiver) if fee_receiver else None
        self.token = token
        self.limbo = 0
        self.balances: Dict[str, int] = {}
        self._transfer = transfer or self._credit_balance
        self._processed: Set[bytes] = set()
        self._lock = threading.Lock()

    def _credit_balance(self, to: str, amount: int) -> None:
        self.balances[to] = self.balances.get(to, 0) + amount

    def _send(self, to: str, amount: int) -> None:
        if amount == 0:
            return
        try:
            self._transfer(to, amount)
        except Exception as e:
            raise BridgeError(f"native transfer to {to} failed: {e}") from e

    def set_fee_receiver(self, fee_receiver: Optional[str]) -> None:
        self.fee_receiver = normalize_address(fee_receiver) if fee_receiver else None

    def flush_limbo(self) -> int:
        """Pay fees accrued in limbo to the fee receiver."""
        with self._lock:
            if self.fee_receiver is None or self.limbo == 0:
                return 0
            amount = self.limbo
            self._send(self.fee_receiver, amount)
            self.limbo = 0
            return amount

    def on_token_bridged(
        self, amount: int, data: bytes, message_id: Optional[bytes] = None
    ) -> DeliveryStatus:
        """Handle one bridged withdrawal; never loses funds."""
        if message_id is None:
            message_id = hashlib.sha3_256(amount.to_bytes(32, "big") + bytes(data)).digest()

        with self._lock:
            if message_id in self._processed:
                logger.info("ignoring replayed withdrawal %s", message_id.hex()[:16])
                return DeliveryStatus.DUPLICATE
            self._processed.add(message_id)

            try:
                recipient, l1_fee = decode_unwrap_data(data)
                if l1_fee > amount:
                    raise AmountMismatch(f"l1 fee {l1_fee} exceeds bridged amount {amount}")
                self._send(recipient, amount - l1_fee)
            except ShieldedPoolError as e:
                self.custodian.credit(message_id, self.token, amount, str(e))
                return DeliveryStatus.FALLBACK

            if l1_fee:
                if self.fee_receiver is None:
                    self.limbo += l1_fee
                else:
                    try:
                        self._send(self.fee_receiver, l1_fee)
                    except BridgeError as e:
                        logger.warning("fee payment failed, keeping fee in limbo: %s", e)
                        self.limbo += l1_fee

            logger.info("delivered %d to %s (l1 fee %d)", amount - l1_fee, recipient, l1_fee)
            return DeliveryStatus.ACCEPTED
