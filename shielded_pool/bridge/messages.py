"""
Bridge wire formats.

Inbound payload (origin -> pool), CBOR map:
    {"v": 1, "tx": <serialized ShieldedTransaction>,
     "account": {"owner": "0x..", "address": "0x.."} | None}

Outbound unwrap data (pool -> origin), CBOR map:
    {"v": 1, "recipient": <20 bytes>, "l1_fee": int}
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import cbor2

from ..protocol.config import ADDRESS_BYTES, DOMAIN_SEPARATORS, PAYLOAD_VERSION
from ..protocol.exceptions import PayloadDecodeError, ShieldedPoolError
from ..protocol.security import encode_length_prefixed
from ..protocol.types import ShieldedTransaction, normalize_address


class DeliveryStatus(Enum):
    """Outcome of handling one cross-domain message."""

    ACCEPTED = "accepted"
    FALLBACK = "fallback"
    DUPLICATE = "duplicate"


def compute_message_id(token: str, amount: int, payload: bytes) -> bytes:
    """Content-derived id for channels that do not supply one."""
    if amount < 0:
        raise ValueError("amount must be non-negative")
    data = encode_length_prefixed(
        [
            DOMAIN_SEPARATORS["bridge_message"],
            token.encode("utf-8"),
            amount.to_bytes((amount.bit_length() + 7) // 8 or 1, "big"),
            bytes(payload),
        ]
    )
    return hashlib.sha3_256(data).digest()


@dataclass(frozen=True)
class BridgePayload:
    """Shielded deposit carried across the bridge, with an optional account registration."""

    tx: ShieldedTransaction
    account: Optional[Tuple[str, str]] = None

    def encode(self) -> bytes:
        account = None
        if self.account is not None:
            owner, address = self.account
            account = {"owner": owner, "address": address}
        return cbor2.dumps({"v": PAYLOAD_VERSION, "tx": self.tx.serialize(), "account": account})

    @classmethod
    def decode(cls, data: bytes) -> "BridgePayload":
        """
        Raises:
            PayloadDecodeError: On any malformed payload
        """
        try:
            obj = cbor2.loads(data)
            if not isinstance(obj, dict) or obj.get("v") != PAYLOAD_VERSION:
                raise ValueError("unsupported payload version")
            tx = ShieldedTransaction.deserialize(obj["tx"])
            account = obj.get("account")
            if account is not None:
                account = (normalize_address(account["owner"]), str(account["address"]))
            return cls(tx=tx, account=account)
        except (ShieldedPoolError, ValueError, TypeError, KeyError, cbor2.CBORDecodeError) as e:
            raise PayloadDecodeError(f"Failed to decode bridge payload: {e}") from e


def encode_unwrap_data(recipient: str, l1_fee: int) -> bytes:
    if l1_fee < 0:
        raise ValueError("l1_fee must be non-negative")
    return cbor2.dumps(
        {
            "v": PAYLOAD_VERSION,
            "recipient": bytes.fromhex(normalize_address(recipient)[2:]),
            "l1_fee": l1_fee,
        }
    )


def decode_unwrap_data(data: bytes) -> Tuple[str, int]:
    """
    Returns:
        (recipient, l1_fee)

    Raises:
        PayloadDecodeError: On any malformed call data
    """
    try:
        obj = cbor2.loads(data)
        if not isinstance(obj, dict) or obj.get("v") != PAYLOAD_VERSION:
            raise ValueError("unsupported call data version")
        recipient = obj["recipient"]
        l1_fee = obj["l1_fee"]
        if not isinstance(recipient, bytes) or len(recipient) != ADDRESS_BYTES:
            raise ValueError("recipient must be 20 bytes")
        if isinstance(l1_fee, bool) or not isinstance(l1_fee, int) or l1_fee < 0:
            raise ValueError("l1_fee must be a non-negative int")
        return "0x" + recipient.hex(), l1_fee
    except (ValueError, TypeError, KeyError, cbor2.CBORDecodeError) as e:
        raise PayloadDecodeError(f"Failed to decode unwrap data: {e}") from e
