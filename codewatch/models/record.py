"""
codewatch/models/record.py
Shared dataclass schema. Backends, the dedup engine, the store and
exporters all use these types. Do not add logic here — data only.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

UNKNOWN_SENDER = 'Unknown'
KEY_SEPARATOR  = '-'


@dataclass
class CandidateRecord:
    """Raw backend output. Not yet normalized, validated or stamped."""
    sender:           str
    code:             str
    original_message: str             = ''
    confidence:       Optional[float] = None


@dataclass(frozen=True)
class ExtractedRecord:
    """Accepted record. code is always exactly six digits."""
    sender:           str
    code:             str
    original_message: str
    confidence:       float
    timestamp_ms:     int

    @property
    def key(self) -> str:
        return identity_key(self.sender, self.code)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def identity_key(sender: str, code: str) -> str:
    """Dedup identity: same sender + same code is the same event."""
    return f"{sender}{KEY_SEPARATOR}{code}"
