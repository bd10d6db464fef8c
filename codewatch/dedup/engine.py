"""
codewatch/dedup/engine.py
Dedup/merge engine. Owns the seen-key set.

Lifecycle of the seen-key set:
  - empty on construction and after reset_all()
  - +1 key per accepted record
  - -1 key when a record is released (deleted from the store)

accept() is safe to call from the capture loop's worker thread and from
manual submissions at the same time. Check-and-insert happens under one lock,
so a given sender+code is accepted at most once until it is released.
"""

import logging
import re
import threading
import time
from typing import Iterable, List, Optional, Set

from codewatch.errors import InvalidRecordError
from codewatch.models.record import (
    UNKNOWN_SENDER,
    CandidateRecord,
    ExtractedRecord,
    identity_key,
)

logger = logging.getLogger(__name__)

CODE_SEPARATORS = re.compile(r'[\s\-]+')
CODE_PATTERN    = re.compile(r'^[0-9]{6}$')


def normalize_code(raw: str) -> str:
    """
    Strip spaces and hyphens. Raises InvalidRecordError unless
    exactly six ASCII digits remain ("123-456" -> "123456").
    """
    code = CODE_SEPARATORS.sub('', str(raw or ''))
    if not CODE_PATTERN.match(code):
        raise InvalidRecordError(f"code does not reduce to 6 digits: {raw!r}")
    return code


def normalize_sender(raw: Optional[str]) -> str:
    sender = ' '.join(str(raw or '').split())
    return sender or UNKNOWN_SENDER


def _clamp_confidence(value: Optional[float]) -> float:
    if value is None:
        return 1.0
    try:
        conf = float(value)
    except (TypeError, ValueError):
        return 1.0
    if conf != conf:    # NaN
        return 1.0
    return max(0.0, min(1.0, conf))


def normalize_candidate(candidate: CandidateRecord, timestamp_ms: int) -> ExtractedRecord:
    """Build an ExtractedRecord. Raises InvalidRecordError on a bad code."""
    return ExtractedRecord(
        sender           = normalize_sender(candidate.sender),
        code             = normalize_code(candidate.code),
        original_message = str(candidate.original_message or '').strip(),
        confidence       = _clamp_confidence(candidate.confidence),
        timestamp_ms     = timestamp_ms,
    )


def _now_ms() -> int:
    return int(time.time() * 1000)


class DedupEngine:

    def __init__(self, clock=_now_ms):
        self._seen: Set[str] = set()
        self._lock  = threading.Lock()
        self._clock = clock

    # ── ADMISSION ────────────────────────────────────────────
    def accept(self, batch: Iterable[CandidateRecord]) -> List[ExtractedRecord]:
        """
        Admit new records from a candidate batch.
        Returns only the newly accepted subset, in input order.
        Duplicates (already seen, or repeated within the batch) and
        invalid codes are dropped without raising.
        """
        accepted: List[ExtractedRecord] = []
        dropped_invalid = 0
        dropped_dupes   = 0

        with self._lock:
            for candidate in batch:
                try:
                    record = normalize_candidate(candidate, self._clock())
                except InvalidRecordError as e:
                    logger.debug(f"Dropped candidate: {e}")
                    dropped_invalid += 1
                    continue

                key = record.key
                if key in self._seen:
                    dropped_dupes += 1
                    continue
                self._seen.add(key)
                accepted.append(record)

        if accepted or dropped_invalid or dropped_dupes:
            logger.debug(
                f"accept: {len(accepted)} new, {dropped_dupes} duplicate, "
                f"{dropped_invalid} invalid"
            )
        return accepted

    # ── FORGETTING ───────────────────────────────────────────
    def release(self, record: ExtractedRecord) -> None:
        """Forget record's key so the same sender+code can be accepted again."""
        with self._lock:
            self._seen.discard(record.key)

    def reset_all(self) -> None:
        with self._lock:
            self._seen.clear()

    # ── INSPECTION ───────────────────────────────────────────
    def is_seen(self, sender: str, code: str) -> bool:
        try:
            key = identity_key(normalize_sender(sender), normalize_code(code))
        except InvalidRecordError:
            return False
        with self._lock:
            return key in self._seen

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)
