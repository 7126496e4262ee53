import random

import pytest

from shielded_pool.protocol.config import DOMAIN_SEPARATORS, FIELD_SIZE
from shielded_pool.protocol.hashing import (
    Sha3FieldHash,
    from_field_bytes,
    get_default_hasher,
    to_field,
    to_field_bytes,
)
from shielded_pool.protocol.security import (
    RandomnessSource,
    constant_time_compare,
    encode_length_prefixed,
    hash_to_field,
    permute,
)
from shielded_pool.protocol.types import ExtData


def test_field_hash_is_deterministic() -> None:
    hasher = Sha3FieldHash()
    assert hasher.hash(1, 2, 3) == hasher.hash(1, 2, 3)
    assert 0 <= hasher.hash(1, 2, 3) < FIELD_SIZE


def test_field_hash_separates_arity() -> None:
    hasher = Sha3FieldHash()
    assert hasher.hash(7) != hasher.hash(7, 0)


def test_field_hash_separates_domains() -> None:
    assert Sha3FieldHash(b"a").hash(1) != Sha3FieldHash(b"b").hash(1)


def test_hash_pair_matches_two_element_hash() -> None:
    hasher = Sha3FieldHash()
    assert hasher.hash_pair(4, 5) == hasher.hash(4, 5)
    assert hasher.hash_pair(4, 5) != hasher.hash_pair(5, 4)


def test_field_hash_rejects_out_of_range() -> None:
    hasher = Sha3FieldHash()
    with pytest.raises(ValueError):
        hasher.hash(FIELD_SIZE)
    with pytest.raises(ValueError):
        hasher.hash(-1)
    with pytest.raises(ValueError):
        hasher.hash()


def test_default_hasher_is_cached() -> None:
    assert get_default_hasher() is get_default_hasher()


def test_field_bytes_roundtrip_and_bounds() -> None:
    value = FIELD_SIZE - 1
    assert from_field_bytes(to_field_bytes(value)) == value
    assert len(to_field_bytes(0)) == 32
    with pytest.raises(ValueError):
        from_field_bytes((FIELD_SIZE).to_bytes(32, "big"))
    with pytest.raises(ValueError):
        from_field_bytes(b"\x00" * 31)
    with pytest.raises(TypeError):
        to_field_bytes(True)


def test_to_field_wraps_negative_values() -> None:
    assert to_field(-5) == FIELD_SIZE - 5
    assert to_field(5) == 5


def test_ext_data_hash_is_domain_separated() -> None:
    ext = ExtData(ext_amount=-7, fee=2, relayer="0x" + "22" * 20, recipient="0x" + "11" * 20)
    assert ext.hash() == hash_to_field(ext.encode(), DOMAIN_SEPARATORS["ext_data"])
    assert ext.hash() != hash_to_field(ext.encode())
    assert ext.public_amount == to_field(-7) == FIELD_SIZE - 7


class TestSecurityHelpers:
    """Test randomness, hashing and permutation helpers."""

    def test_random_field_element_in_range(self):
        rng = RandomnessSource()
        for _ in range(20):
            assert 0 < rng.get_random_field_element() < FIELD_SIZE

    def test_random_bytes_length(self):
        assert len(RandomnessSource().get_random_bytes(24)) == 24

    def test_hash_to_field_uses_domain(self):
        assert hash_to_field(b"x", b"d1") != hash_to_field(b"x", b"d2")
        with pytest.raises(TypeError):
            hash_to_field("x")

    def test_length_prefix_is_unambiguous(self):
        assert encode_length_prefixed([b"ab", b"c"]) != encode_length_prefixed([b"a", b"bc"])

    def test_constant_time_compare(self):
        assert constant_time_compare(b"abc", b"abc") is True
        assert constant_time_compare(b"abc", b"abd") is False

    def test_permute_with_seed_is_reproducible(self):
        items = list(range(16))
        first = permute(items, random.Random(42))
        second = permute(items, random.Random(42))
        assert first == second
        assert sorted(first) == items
        assert items == list(range(16))

    def test_permute_without_seed_keeps_items(self):
        items = ["a", "b", "c"]
        assert sorted(permute(items)) == items
