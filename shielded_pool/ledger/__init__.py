"""
Ledger state machine, storage and async service.
"""

from .service import LedgerService, transaction_id
from .state import (
    LedgerLimits,
    LedgerState,
    NewCommitment,
    NewNullifier,
    Payout,
    PayoutKind,
    PublicKey,
    Receipt,
)
from .storage import InMemoryStore, KeyValueStore, WriteBatch

__all__ = [
    "InMemoryStore",
    "KeyValueStore",
    "LedgerLimits",
    "LedgerService",
    "LedgerState",
    "NewCommitment",
    "NewNullifier",
    "Payout",
    "PayoutKind",
    "PublicKey",
    "Receipt",
    "WriteBatch",
    "transaction_id",
]
