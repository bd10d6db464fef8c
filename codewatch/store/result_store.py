"""
codewatch/store/result_store.py
Ordered collection of accepted records.

The store and the dedup engine's seen-key set always change together:
ingest() accepts + appends, remove_at() removes + releases, clear() empties +
resets. All three hold the store lock for the whole pair.
"""

import logging
import threading
from typing import Callable, Iterable, Iterator, List, Optional

from codewatch.dedup.engine import DedupEngine
from codewatch.models.record import CandidateRecord, ExtractedRecord

logger = logging.getLogger(__name__)


def matches_query(record: ExtractedRecord, query: Optional[str]) -> bool:
    needle = (query or '').strip().lower()
    if not needle:
        return True
    return needle in record.sender.lower() or needle in record.code


class ResultStore:

    def __init__(self, engine: Optional[DedupEngine] = None):
        self.engine = engine or DedupEngine()
        self._records: List[ExtractedRecord] = []
        self._lock = threading.RLock()

    # ── MUTATION ─────────────────────────────────────────────
    def ingest(self, candidates: Iterable[CandidateRecord]) -> List[ExtractedRecord]:
        """Run candidates through the dedup engine and append what it accepts."""
        with self._lock:
            accepted = self.engine.accept(candidates)
            self._records.extend(accepted)
        if accepted:
            logger.info(f"Store: {len(accepted)} new record(s), {len(self._records)} total")
        return accepted

    def append(self, records: Iterable[ExtractedRecord]) -> None:
        with self._lock:
            self._records.extend(records)

    def remove_at(self, index: int) -> Optional[ExtractedRecord]:
        """
        Remove the record at index and release its key in the engine.
        Out-of-range (including negative) index is a no-op: returns None,
        never raises. UI deletes may come from stale indices.
        """
        with self._lock:
            if not isinstance(index, int) or not 0 <= index < len(self._records):
                logger.debug(f"remove_at({index!r}) ignored — store has {len(self._records)}")
                return None
            record = self._records.pop(index)
            self.engine.release(record)
        return record

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self.engine.reset_all()
        logger.info("Store cleared")

    # ── READ ─────────────────────────────────────────────────
    def records(self) -> List[ExtractedRecord]:
        with self._lock:
            return list(self._records)

    def filter(self, predicate: Callable[[ExtractedRecord], bool]) -> Iterator[ExtractedRecord]:
        """Lazy view over a snapshot of the store. Never mutates it."""
        snapshot = self.records()
        return (r for r in snapshot if predicate(r))

    def search(self, query: str) -> Iterator[ExtractedRecord]:
        """Case-insensitive match on sender, or substring match on code."""
        return self.filter(lambda r: matches_query(r, query))

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __getitem__(self, index: int) -> ExtractedRecord:
        with self._lock:
            return self._records[index]

    def __iter__(self) -> Iterator[ExtractedRecord]:
        return iter(self.records())
