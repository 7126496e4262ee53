import pytest

from shielded_pool.protocol.codec import (
    NaclBoxScheme,
    pack_note_payload,
    unpack_envelope,
    unpack_note_payload,
)
from shielded_pool.protocol.config import (
    ENCRYPTED_OUTPUT_BYTES,
    FIELD_SIZE,
    NOTE_PAYLOAD_BYTES,
    SHIELDED_ADDRESS_HEX_LEN,
)
from shielded_pool.protocol.exceptions import (
    DecryptionFailed,
    InvalidKeyFormat,
    MissingIndexOrKey,
)
from shielded_pool.protocol.hashing import get_default_hasher
from shielded_pool.protocol.keypair import Keypair


def test_pubkey_is_hash_of_privkey() -> None:
    keypair = Keypair(privkey=12345)
    assert keypair.pubkey == get_default_hasher().hash(12345)
    assert Keypair(privkey=12345) == keypair


def test_keypair_rejects_bad_privkey() -> None:
    with pytest.raises(InvalidKeyFormat):
        Keypair(privkey=0)
    with pytest.raises(InvalidKeyFormat):
        Keypair(privkey=FIELD_SIZE)


def test_address_roundtrip_gives_viewing_only_keypair() -> None:
    keypair = Keypair()
    address = keypair.address()
    assert address.startswith("0x")
    assert len(address) == 2 + SHIELDED_ADDRESS_HEX_LEN

    imported = Keypair.from_address(address)
    assert imported.privkey is None
    assert imported.can_spend is False
    assert imported.pubkey == keypair.pubkey
    assert imported.encryption_key == keypair.encryption_key
    assert imported == keypair
    assert str(imported) == address


@pytest.mark.parametrize(
    "address",
    ["", "0x1234", "0x" + "zz" * 64, "0x" + "ff" * 64, 42],
)
def test_from_address_rejects_malformed(address) -> None:
    with pytest.raises(InvalidKeyFormat):
        Keypair.from_address(address)


def test_encrypt_decrypt_roundtrip() -> None:
    keypair = Keypair()
    ciphertext = Keypair.from_address(keypair.address()).encrypt(b"hello note")
    assert keypair.decrypt(ciphertext) == b"hello note"


def test_decrypt_with_wrong_key_fails() -> None:
    ciphertext = Keypair().encrypt(b"secret")
    with pytest.raises(DecryptionFailed):
        Keypair().decrypt(ciphertext)


def test_viewing_only_keypair_cannot_decrypt() -> None:
    keypair = Keypair()
    ciphertext = keypair.encrypt(b"secret")
    viewer = Keypair.from_address(keypair.address())
    with pytest.raises(DecryptionFailed):
        viewer.decrypt(ciphertext)
    with pytest.raises(MissingIndexOrKey):
        viewer._encryption_secret()


def test_tampered_ciphertext_fails() -> None:
    keypair = Keypair()
    ciphertext = bytearray(keypair.encrypt(b"secret"))
    ciphertext[-1] ^= 0x01
    with pytest.raises(DecryptionFailed):
        keypair.decrypt(bytes(ciphertext))


def test_envelope_layout() -> None:
    keypair = Keypair()
    payload = pack_note_payload(10_000_000, 99)
    assert len(payload) == NOTE_PAYLOAD_BYTES
    envelope = keypair.encrypt(payload)
    assert len(envelope) == ENCRYPTED_OUTPUT_BYTES
    nonce, ephemeral, body = unpack_envelope(envelope)
    assert len(nonce) == 24
    assert len(ephemeral) == 32
    assert len(body) == NOTE_PAYLOAD_BYTES + 16
    assert unpack_note_payload(keypair.decrypt(envelope)) == (10_000_000, 99)


def test_short_envelope_fails() -> None:
    with pytest.raises(DecryptionFailed):
        unpack_envelope(b"\x00" * 40)


def test_payload_unpack_rejects_bad_input() -> None:
    with pytest.raises(DecryptionFailed):
        unpack_note_payload(b"\x00" * 63)
    with pytest.raises(DecryptionFailed):
        unpack_note_payload(b"\xff" * 64)


def test_scheme_uses_fresh_ephemeral_keys() -> None:
    scheme = NaclBoxScheme()
    keypair = Keypair()
    first = scheme.encrypt(keypair.encryption_key, b"same")
    second = scheme.encrypt(keypair.encryption_key, b"same")
    assert first != second
    assert first[24:56] != second[24:56]
