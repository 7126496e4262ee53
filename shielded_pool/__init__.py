"""
Shielded pool ledger.

Private balances held as notes: hiding commitments in an append-only Merkle
accumulator, spent by revealing nullifiers with a proof of membership and
balance. Bridged deposits and withdrawals connect the pool to an origin
domain.
"""

__version__ = "0.1.0"
