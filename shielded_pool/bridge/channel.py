"""
Bridge channel between the pool's domain and the origin domain.
"""

from __future__ import annotations

import hashlib
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List

from ..protocol.types import normalize_address
from .messages import DeliveryStatus, encode_unwrap_data
from .unwrapper import L1Unwrapper


@dataclass(frozen=True)
class BridgeCall:
    """One outbound sendToBridge call."""

    recipient: str
    amount: int
    fee: int
    data: bytes
    nonce: int = 0

    @property
    def message_id(self) -> bytes:
        return hashlib.sha3_256(
            self.nonce.to_bytes(8, "big") + self.amount.to_bytes(32, "big") + self.data
        ).digest()


class BridgeChannel(ABC):
    @abstractmethod
    def send_to_bridge(self, recipient: str, amount: int, fee: int) -> BridgeCall:
        """Queue amount for recipient on the origin domain, fee split off there."""


class InMemoryBridgeChannel(BridgeChannel):
    """
    Outbound queue delivered explicitly with deliver().

    Delivery is at-least-once: redeliver() replays calls already delivered.
    """

    def __init__(self) -> None:
        self.sent: List[BridgeCall] = []
        self._pending: List[BridgeCall] = []
        self._lock = threading.Lock()

    def send_to_bridge(self, recipient: str, amount: int, fee: int) -> BridgeCall:
        if amount <= 0:
            raise ValueError("bridge amount must be positive")
        data = encode_unwrap_data(recipient, fee)
        with self._lock:
            call = BridgeCall(
                recipient=normalize_address(recipient),
                amount=amount,
                fee=fee,
                data=data,
                nonce=len(self.sent),
            )
            self.sent.append(call)
            self._pending.append(call)
        return call

    def deliver(self, unwrapper: L1Unwrapper) -> List[DeliveryStatus]:
        with self._lock:
            pending, self._pending = self._pending, []
        return [
            unwrapper.on_token_bridged(call.amount, call.data, call.message_id)
            for call in pending
        ]

    def redeliver(self, unwrapper: L1Unwrapper) -> List[DeliveryStatus]:
        with self._lock:
            calls = list(self.sent)
        return [
            unwrapper.on_token_bridged(call.amount, call.data, call.message_id)
            for call in calls
        ]
