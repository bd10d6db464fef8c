"""
codewatch — live verification-code extractor.

Captures frames from a shared screen (or takes uploaded screenshots and pasted
text), runs them through a vision LLM or OCR backend, and keeps a deduplicated
list of sender + 6-digit code records.
"""

__version__ = "1.0.0"
