"""codewatch/dedup — seen-key tracking for accepted records."""

from codewatch.dedup.engine import DedupEngine, normalize_candidate, normalize_code

__all__ = ["DedupEngine", "normalize_candidate", "normalize_code"]
