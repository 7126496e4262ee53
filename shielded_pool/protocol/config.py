"""
Protocol configuration for the shielded pool.

All parameters that affect commitments, nullifiers, tree roots or the wire
format live here. Changing any of them produces an incompatible pool.
"""

import hashlib

# ============================================================================
# SCALAR FIELD
# ============================================================================

# BN254 scalar field (the field the proof system's circuits are defined over)
FIELD_SIZE = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)
FIELD_SIZE_BITS = 254
FIELD_ELEMENT_BYTES = 32

# ============================================================================
# MERKLE ACCUMULATOR
# ============================================================================

MERKLE_TREE_HEIGHT = 23
ROOT_HISTORY_SIZE = 100

# ============================================================================
# TRANSACTION SHAPE
# ============================================================================

INPUT_ARITIES = (2, 16)
OUTPUT_COUNT = 2

# Amounts must fit in 248 bits so sums of 16 inputs never wrap the field
MAX_AMOUNT_BITS = 248
MAX_EXT_AMOUNT = 2**248
MAX_FEE = 2**248

# ============================================================================
# HASH FUNCTIONS
# ============================================================================

HASH_FUNCTION = "SHA3-256"
HASH_OUTPUT_BITS = 256

DOMAIN_SEPARATOR_PREFIX = b"SHIELDED_POOL_V1_"

DOMAIN_SEPARATORS = {
    "field_hash": DOMAIN_SEPARATOR_PREFIX + b"FIELD_HASH",
    "zero_leaf": DOMAIN_SEPARATOR_PREFIX + b"ZERO_LEAF",
    "ext_data": DOMAIN_SEPARATOR_PREFIX + b"EXT_DATA",
    "bridge_message": DOMAIN_SEPARATOR_PREFIX + b"BRIDGE_MESSAGE",
    "mock_proof": DOMAIN_SEPARATOR_PREFIX + b"MOCK_PROOF",
}

# Value of an unused leaf, derived once from a public seed
ZERO_VALUE = (
    int.from_bytes(hashlib.sha3_256(DOMAIN_SEPARATORS["zero_leaf"]).digest(), "big")
    % FIELD_SIZE
)

# ============================================================================
# NOTE ENCRYPTION (x25519-xsalsa20-poly1305)
# ============================================================================

NOTE_PAYLOAD_BYTES = 2 * FIELD_ELEMENT_BYTES  # amount || blinding
NONCE_BYTES = 24
EPHEMERAL_KEY_BYTES = 32
ENCRYPTION_KEY_BYTES = 32
MAC_BYTES = 16
ENCRYPTED_OUTPUT_BYTES = (
    NONCE_BYTES + EPHEMERAL_KEY_BYTES + NOTE_PAYLOAD_BYTES + MAC_BYTES
)

# Shielded address: pubkey (32 bytes) || encryption key (32 bytes)
SHIELDED_ADDRESS_HEX_LEN = 2 * (FIELD_ELEMENT_BYTES + ENCRYPTION_KEY_BYTES)

# External (domain) account addresses
ADDRESS_BYTES = 20
ZERO_ADDRESS = "0x" + "00" * ADDRESS_BYTES

# ============================================================================
# SERIALIZATION
# ============================================================================

SERIALIZATION_FORMAT = "CBOR"
PAYLOAD_VERSION = 1
MAX_TRANSACTION_PAYLOAD_BYTES = 64 * 1024

# ============================================================================
# VALIDATION
# ============================================================================


def validate_config() -> bool:
    """
    Validate configuration parameters.

    Returns:
        True if configuration is valid

    Raises:
        AssertionError: If configuration is invalid
    """
    assert FIELD_SIZE.bit_length() == FIELD_SIZE_BITS, "Unexpected field size"
    assert FIELD_SIZE < 2 ** (8 * FIELD_ELEMENT_BYTES), "Field element too wide"
    assert 1 <= MERKLE_TREE_HEIGHT <= 32, "Tree height out of range"
    assert ROOT_HISTORY_SIZE >= 1, "Root history must hold the current root"
    assert OUTPUT_COUNT == 2, "Transactions have exactly two outputs"
    assert tuple(sorted(INPUT_ARITIES)) == INPUT_ARITIES, "Arities must be sorted"
    assert MAX_EXT_AMOUNT * 2 < FIELD_SIZE, "Signed amounts must not wrap"
    assert 16 * 2**MAX_AMOUNT_BITS < FIELD_SIZE, "Input sums must not wrap"
    assert HASH_FUNCTION in ["SHA3-256", "SHA256"], "Invalid hash function"
    assert 0 < ZERO_VALUE < FIELD_SIZE, "Zero leaf must be a field element"
    assert SERIALIZATION_FORMAT == "CBOR", "Only CBOR is supported"

    return True


# Auto-validate on import
validate_config()
