"""Tests for the record store — proves wholesale refresh and derived views."""

import asyncio
from typing import Optional

import pytest

from autopay.errors import RecordNotFound
from autopay.models.record import RawRecord
from autopay.store import RecordStore


def _raw(
    name: str,
    creator: str = "0xAAA",
    condition: int = 1,
    verified: bool = False,
    amount: int = 0,
) -> RawRecord:
    return RawRecord(
        name=name, creator=creator, timestamp=1_760_000_000,
        public_value1=condition, is_verified=verified, decrypted_value=amount,
    )


class FakeLedgerReader:
    """Read view over a dict, with failure switches."""

    def __init__(self, records: dict[str, RawRecord]) -> None:
        self.records = dict(records)
        self.order: Optional[list[str]] = None
        self.broken: set[str] = set()
        self.fail_enumeration = False

    async def contract_address(self) -> str:
        return "0xC0"

    async def get_all_record_ids(self) -> list[str]:
        if self.fail_enumeration:
            raise RuntimeError("rpc down")
        return list(self.order) if self.order is not None else list(self.records)

    async def get_record(self, record_id: str) -> RawRecord:
        if record_id in self.broken:
            raise RuntimeError("bad record")
        if record_id not in self.records:
            raise RecordNotFound(record_id)
        return self.records[record_id]

    async def get_ciphertext_handle(self, record_id: str) -> str:
        return f"0xhandle-{record_id}"


@pytest.fixture
def ledger() -> FakeLedgerReader:
    return FakeLedgerReader({
        "b": _raw("Rent", condition=5),
        "a": _raw("Gym", creator="0xBBB", condition=0, verified=True, amount=30),
        "c": _raw("Phone bill", condition=2, verified=True, amount=50),
    })


@pytest.fixture
def store(ledger: FakeLedgerReader) -> RecordStore:
    return RecordStore(ledger)


class TestRefresh:
    def test_empty_before_refresh(self, store: RecordStore) -> None:
        assert store.snapshot() == []
        assert len(store) == 0

    def test_preserves_ledger_order(self, store: RecordStore) -> None:
        records = asyncio.run(store.refresh())
        assert [r.record_id for r in records] == ["b", "a", "c"]
        assert [r.record_id for r in store.snapshot()] == ["b", "a", "c"]

    def test_replaces_wholesale(self, store: RecordStore, ledger: FakeLedgerReader) -> None:
        asyncio.run(store.refresh())
        ledger.records = {"z": _raw("New")}
        asyncio.run(store.refresh())
        assert [r.record_id for r in store.snapshot()] == ["z"]
        assert "b" not in store

    def test_reflects_verification(self, store: RecordStore, ledger: FakeLedgerReader) -> None:
        asyncio.run(store.refresh())
        ledger.records["b"] = _raw("Rent", condition=5, verified=True, amount=100)
        asyncio.run(store.refresh())
        record = store.get("b")
        assert record.is_verified
        assert record.clear_amount == 100

    def test_skips_unreadable_record(self, store: RecordStore, ledger: FakeLedgerReader) -> None:
        ledger.broken.add("a")
        records = asyncio.run(store.refresh())
        assert [r.record_id for r in records] == ["b", "c"]

    def test_enumeration_failure_leaves_store_untouched(
        self, store: RecordStore, ledger: FakeLedgerReader,
    ) -> None:
        asyncio.run(store.refresh())
        ledger.fail_enumeration = True
        with pytest.raises(RuntimeError, match="rpc down"):
            asyncio.run(store.refresh())
        assert [r.record_id for r in store.snapshot()] == ["b", "a", "c"]

    def test_duplicate_ids_kept_once(self, store: RecordStore, ledger: FakeLedgerReader) -> None:
        ledger.order = ["b", "a", "b"]
        records = asyncio.run(store.refresh())
        assert [r.record_id for r in records] == ["b", "a"]

    def test_handles_attached(self, store: RecordStore) -> None:
        asyncio.run(store.refresh())
        assert store.get("b").ciphertext_handle == "0xhandle-b"

    def test_get_unknown(self, store: RecordStore) -> None:
        assert store.get("missing") is None


class TestLocalPreview:
    def test_preview_applied_to_snapshot(self, store: RecordStore) -> None:
        asyncio.run(store.refresh())
        store.set_local_preview("b", 100)
        record = store.get("b")
        assert record.local_clear_amount == 100
        assert record.clear_amount is None
        assert not record.is_verified

    def test_preview_survives_refresh(self, store: RecordStore) -> None:
        asyncio.run(store.refresh())
        store.set_local_preview("b", 100)
        asyncio.run(store.refresh())
        assert store.get("b").local_clear_amount == 100

    def test_preview_dropped_with_record(
        self, store: RecordStore, ledger: FakeLedgerReader,
    ) -> None:
        asyncio.run(store.refresh())
        store.set_local_preview("b", 100)
        del ledger.records["b"]
        asyncio.run(store.refresh())
        ledger.records["b"] = _raw("Rent", condition=5)
        asyncio.run(store.refresh())
        assert store.get("b").local_clear_amount is None

    def test_clear_preview(self, store: RecordStore) -> None:
        asyncio.run(store.refresh())
        store.set_local_preview("b", 100)
        assert store.clear_local_preview("b")
        assert not store.clear_local_preview("b")
        assert store.get("b").local_clear_amount is None

    def test_preview_for_unknown_record_rejected(self, store: RecordStore) -> None:
        with pytest.raises(KeyError):
            store.set_local_preview("missing", 1)


class TestDerivedViews:
    def test_search_by_name(self, store: RecordStore) -> None:
        asyncio.run(store.refresh())
        assert [r.record_id for r in store.search("RENT")] == ["b"]

    def test_search_by_creator(self, store: RecordStore) -> None:
        asyncio.run(store.refresh())
        assert [r.record_id for r in store.search("0xbbb")] == ["a"]

    def test_search_does_not_mutate(self, store: RecordStore) -> None:
        asyncio.run(store.refresh())
        store.search("gym")
        assert len(store.snapshot()) == 3

    def test_empty_search_returns_all(self, store: RecordStore) -> None:
        asyncio.run(store.refresh())
        assert len(store.search("")) == 3

    def test_stats(self, store: RecordStore) -> None:
        asyncio.run(store.refresh())
        stats = store.stats()
        assert stats.total == 3
        assert stats.verified == 2
        assert stats.pending == 1
        assert stats.active == 2
        assert stats.average_amount == pytest.approx(80 / 3)
        assert stats.success_rate == pytest.approx(200 / 3)

    def test_stats_empty(self, store: RecordStore) -> None:
        stats = store.stats()
        assert stats.total == 0
        assert stats.average_amount == 0.0
        assert stats.success_rate == 0.0
