"""codewatch/models — shared record types."""

from codewatch.models.record import (
    UNKNOWN_SENDER,
    CandidateRecord,
    ExtractedRecord,
    identity_key,
)

__all__ = [
    "UNKNOWN_SENDER",
    "CandidateRecord",
    "ExtractedRecord",
    "identity_key",
]
