from __future__ import annotations

import pytest

from shielded_pool.ledger.storage import InMemoryStore, be_u64


def test_batch_applies_on_exit() -> None:
    store = InMemoryStore()
    with store.batch() as batch:
        batch.put(b"n:a", b"1")
        batch.put(b"n:b", b"2")
        assert store.get(b"n:a") is None
    assert store.get(b"n:a") == b"1"
    assert len(store) == 2


def test_batch_discarded_on_exception() -> None:
    store = InMemoryStore()
    store_batch = store.batch()
    with pytest.raises(RuntimeError):
        with store_batch as batch:
            batch.put(b"n:a", b"1")
            raise RuntimeError("boom")
    assert not store.has(b"n:a")
    assert len(store) == 0


def test_delete_and_prefix_order() -> None:
    store = InMemoryStore()
    with store.batch() as batch:
        for i in (10, 2, 256):
            batch.put(b"o:" + be_u64(i), str(i).encode())
        batch.put(b"m:other", b"x")
    assert [v for _, v in store.iter_prefix(b"o:")] == [b"2", b"10", b"256"]

    with store.batch() as batch:
        batch.delete(b"o:" + be_u64(10))
    assert [v for _, v in store.iter_prefix(b"o:")] == [b"2", b"256"]


def test_batch_must_be_open() -> None:
    batch = InMemoryStore().batch()
    with pytest.raises(RuntimeError, match="not open"):
        batch.put(b"k", b"v")


def test_be_u64_range() -> None:
    assert be_u64(1) == b"\x00" * 7 + b"\x01"
    with pytest.raises(ValueError):
        be_u64(-1)
    with pytest.raises(ValueError):
        be_u64(1 << 64)
