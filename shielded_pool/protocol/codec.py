"""
Note codec: fixed-width payload layout and the encrypted-output envelope.

Payload:  amount (32 bytes BE) || blinding (32 bytes BE)
Envelope: nonce (24) || ephemeral public key (32) || ciphertext

The envelope matches x25519-xsalsa20-poly1305 as used by wallet software, so
independent decryptors can open encrypted outputs read from the ledger.
"""

from __future__ import annotations

from typing import Tuple

from nacl.exceptions import CryptoError
from nacl.public import Box, PrivateKey, PublicKey

from .config import (
    ENCRYPTION_KEY_BYTES,
    EPHEMERAL_KEY_BYTES,
    FIELD_ELEMENT_BYTES,
    MAC_BYTES,
    NONCE_BYTES,
    NOTE_PAYLOAD_BYTES,
)
from .exceptions import DecryptionFailed
from .hashing import from_field_bytes, to_field_bytes
from .interfaces import EncryptionScheme
from .security import RandomnessSource


# ============================================================================
# PAYLOAD
# ============================================================================


def pack_note_payload(amount: int, blinding: int) -> bytes:
    """Pack (amount, blinding) into NOTE_PAYLOAD_BYTES."""
    return to_field_bytes(amount) + to_field_bytes(blinding)


def unpack_note_payload(data: bytes) -> Tuple[int, int]:
    """
    Unpack a decrypted payload into (amount, blinding).

    Raises:
        DecryptionFailed: If the payload has the wrong size or out-of-field values
    """
    if len(data) != NOTE_PAYLOAD_BYTES:
        raise DecryptionFailed("note payload has wrong length")
    try:
        amount = from_field_bytes(data[:FIELD_ELEMENT_BYTES])
        blinding = from_field_bytes(data[FIELD_ELEMENT_BYTES:])
    except ValueError as exc:
        raise DecryptionFailed("note payload is not a pair of field elements") from exc
    return amount, blinding


# ============================================================================
# ENVELOPE
# ============================================================================


def pack_envelope(nonce: bytes, ephemeral_public_key: bytes, ciphertext: bytes) -> bytes:
    if len(nonce) != NONCE_BYTES:
        raise ValueError("nonce has wrong length")
    if len(ephemeral_public_key) != EPHEMERAL_KEY_BYTES:
        raise ValueError("ephemeral public key has wrong length")
    return nonce + ephemeral_public_key + ciphertext


def unpack_envelope(data: bytes) -> Tuple[bytes, bytes, bytes]:
    """
    Split an envelope into (nonce, ephemeral_public_key, ciphertext).

    Raises:
        DecryptionFailed: If the envelope is too short to hold a MAC
    """
    header = NONCE_BYTES + EPHEMERAL_KEY_BYTES
    if not isinstance(data, (bytes, bytearray)) or len(data) < header + MAC_BYTES:
        raise DecryptionFailed("envelope too short")
    data = bytes(data)
    return data[:NONCE_BYTES], data[NONCE_BYTES:header], data[header:]


class NaclBoxScheme(EncryptionScheme):
    """
    x25519-xsalsa20-poly1305 with a fresh ephemeral sender key per message.

    The ephemeral public key travels in the envelope; the recipient derives
    the same shared secret from it and their own private key.
    """

    def __init__(self) -> None:
        self.rng = RandomnessSource()

    def public_key(self, private_key: bytes) -> bytes:
        if len(private_key) != ENCRYPTION_KEY_BYTES:
            raise ValueError("private key has wrong length")
        return bytes(PrivateKey(private_key).public_key)

    def encrypt(self, public_key: bytes, plaintext: bytes) -> bytes:
        if len(public_key) != ENCRYPTION_KEY_BYTES:
            raise ValueError("public key has wrong length")
        ephemeral = PrivateKey.generate()
        nonce = self.rng.get_random_bytes(NONCE_BYTES)
        sealed = Box(ephemeral, PublicKey(public_key)).encrypt(plaintext, nonce)
        return pack_envelope(nonce, bytes(ephemeral.public_key), sealed.ciphertext)

    def decrypt(self, private_key: bytes, ciphertext: bytes) -> bytes:
        nonce, ephemeral_public_key, body = unpack_envelope(ciphertext)
        try:
            box = Box(PrivateKey(private_key), PublicKey(ephemeral_public_key))
            return box.decrypt(body, nonce)
        except (CryptoError, ValueError, TypeError) as exc:
            raise DecryptionFailed("ciphertext was not sealed to this key") from exc
