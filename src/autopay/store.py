"""Record store — the client-side read replica of ledger records.

The ledger owns records. The store only mirrors them: refresh() re-reads
every record and replaces the cache wholesale, preserving the ledger's
enumeration order. There is no incremental patching and no local
deletion.

The one piece of client-local state is the decrypt preview
(local_clear_amount), kept apart from ledger data so that a refresh
never touches it and it never leaks into clear_amount.

Concurrent refreshes are not serialized: the last one to complete wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from autopay.engine.state_machine import VerificationStateMachine
from autopay.interfaces import LedgerReader
from autopay.models.record import AutoPayRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordStats:
    """Dashboard figures derived from a snapshot."""
    total: int
    verified: int
    pending: int
    active: int
    average_amount: float
    success_rate: float


class RecordStore:
    """Cache of all known records, keyed by record id.

    Usage:
        store = RecordStore(ledger)
        records = await store.refresh()
        store.snapshot()          # no I/O
        store.search("rent")      # derived view, store untouched
    """

    def __init__(self, ledger: LedgerReader) -> None:
        self._ledger = ledger
        self._records: dict[str, AutoPayRecord] = {}
        self._previews: dict[str, int] = {}

    async def refresh(self) -> list[AutoPayRecord]:
        """Re-enumerate all records from the ledger and replace the cache.

        A record whose individual fetch fails is skipped with a warning.
        If the enumeration itself fails, the exception propagates and
        the cache is left untouched.
        """
        record_ids = await self._ledger.get_all_record_ids()
        fresh: dict[str, AutoPayRecord] = {}

        for record_id in record_ids:
            if record_id in fresh:
                logger.warning("Ledger enumerated record %s twice; keeping first", record_id)
                continue
            try:
                raw = await self._ledger.get_record(record_id)
                handle = await self._ledger.get_ciphertext_handle(record_id)
            except Exception as exc:
                logger.warning("Skipping record %s: %s", record_id, exc)
                continue
            record = AutoPayRecord.from_raw(record_id, raw, handle)
            for problem in VerificationStateMachine.validate_observed(
                self._records.get(record_id), record,
            ):
                logger.warning("Ledger state anomaly: %s", problem)
            fresh[record_id] = record

        self._records = fresh
        self._previews = {
            rid: amount for rid, amount in self._previews.items() if rid in fresh
        }
        logger.info("Refreshed %d records", len(fresh))
        return self.snapshot()

    def snapshot(self) -> list[AutoPayRecord]:
        """Current cache in ledger order, with local previews applied."""
        return [self._with_preview(r) for r in self._records.values()]

    def get(self, record_id: str) -> Optional[AutoPayRecord]:
        record = self._records.get(record_id)
        if record is None:
            return None
        return self._with_preview(record)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    # ------------------------------------------------------------------
    # Local decrypt previews
    # ------------------------------------------------------------------

    def set_local_preview(self, record_id: str, amount: int) -> None:
        if record_id not in self._records:
            raise KeyError(f"Unknown record: {record_id}")
        self._previews[record_id] = amount

    def clear_local_preview(self, record_id: str) -> bool:
        """Drop a preview. Returns True if one was present."""
        return self._previews.pop(record_id, None) is not None

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def search(self, term: str) -> list[AutoPayRecord]:
        """Records whose name or creator contains term, case-insensitively."""
        needle = term.lower()
        return [
            r for r in self.snapshot()
            if needle in r.name.lower() or needle in r.creator.lower()
        ]

    def stats(self) -> RecordStats:
        records = self.snapshot()
        total = len(records)
        verified = sum(1 for r in records if r.is_verified)
        active = sum(1 for r in records if r.public_condition > 0)
        amount_sum = sum(r.clear_amount or 0 for r in records if r.is_verified)
        return RecordStats(
            total=total,
            verified=verified,
            pending=total - verified,
            active=active,
            average_amount=amount_sum / total if total else 0.0,
            success_rate=verified / total * 100 if total else 0.0,
        )

    def _with_preview(self, record: AutoPayRecord) -> AutoPayRecord:
        preview = self._previews.get(record.record_id)
        if preview is None:
            return record
        return record.with_local_preview(preview)
