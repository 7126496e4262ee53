"""
Exceptions for the shielded pool.

Input errors are raised before any proof work is done. Cryptographic errors
are recoverable by the caller. State-consistency errors are raised atomically,
with no side effects; the caller must rebuild against the current state.
"""


class ShieldedPoolError(Exception):
    """Base exception for shielded pool errors."""

    pass


class ConfigurationError(ShieldedPoolError):
    """Configuration error."""

    pass


# ============================================================================
# INPUT ERRORS
# ============================================================================


class InputError(ShieldedPoolError):
    """Malformed request, rejected before any proof work."""

    pass


class TooManyInputsOrOutputs(InputError):
    """Input count above 16 or output count above 2."""

    pass


class InputNotFound(InputError):
    """An input note's commitment is not in the accumulator."""

    pass


class MissingPubkey(InputError):
    """An output note has no owner public key."""

    pass


class MissingIndexOrKey(InputError):
    """Nullifier requested for a funded note without tree index or privkey."""

    pass


class InvalidKeyFormat(InputError):
    """Shielded address or key material could not be parsed."""

    pass


class InvalidExtData(InputError):
    """External data is malformed or does not match its hash."""

    pass


class InvalidAmount(InputError, ValueError):
    """Amount is not a positive integer."""

    pass


class CommitmentNotFound(InputError, KeyError):
    """Commitment is not a leaf of the accumulator."""

    pass


class TreeFull(InputError):
    """Batch would exceed the accumulator's 2^H capacity."""

    pass


# ============================================================================
# CRYPTOGRAPHIC ERRORS
# ============================================================================


class CryptographicError(ShieldedPoolError):
    """Cryptographic operation error."""

    pass


class DecryptionFailed(CryptographicError):
    """Ciphertext could not be opened with the given key."""

    pass


class ProverFailure(CryptographicError):
    """The external prover could not produce a proof."""

    pass


class WitnessError(ProverFailure):
    """Witness does not satisfy the transaction constraints."""

    pass


class ProverIOError(ProverFailure):
    """Prover process or its files could not be used."""

    pass


class InvalidProof(CryptographicError):
    """Proof does not verify against the public inputs."""

    pass


# ============================================================================
# STATE-CONSISTENCY ERRORS
# ============================================================================


class StateConsistencyError(ShieldedPoolError):
    """Transaction conflicts with the current ledger state."""

    pass


class StaleOrUnknownRoot(StateConsistencyError):
    """Proof root is outside the root history window."""

    pass


class DoubleSpend(StateConsistencyError):
    """An input nullifier has already been spent."""

    pass


class AmountMismatch(StateConsistencyError):
    """Declared public amount does not match the value moved."""

    pass


class LimitExceeded(StateConsistencyError):
    """Deposit above the maximum or withdrawal below the minimum."""

    pass


# ============================================================================
# BRIDGE ERRORS
# ============================================================================


class BridgeError(ShieldedPoolError):
    """Cross-domain reconciliation error."""

    pass


class PayloadDecodeError(BridgeError):
    """Bridge payload could not be decoded."""

    pass


class UnsupportedToken(BridgeError):
    """Bridged token is not the pool's token."""

    pass
