"""
codewatch/backends/base.py
Abstract base class for all extraction backends.
To add a new backend: subclass ExtractionBackend and implement
analyze_image() and extract_from_text().

Error contracts — three named operations, not one function with
call-site-dependent behaviour:

  extract_from_image()  live capture path. Never raises: any BackendError
                        is logged and becomes [] so the monitor keeps running.
  analyze_image()       one-shot upload path. Raises BackendError.
  extract_from_text()   one-shot paste path. Raises BackendError.
"""

import logging
from abc import ABC, abstractmethod
from typing import List

from codewatch.errors import BackendError
from codewatch.models.record import CandidateRecord

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are a real-time data extraction assistant monitoring a chat "
    "application screen (for example WhatsApp Web).\n"
    "Your goal is to identify and extract 6-digit numeric verification codes "
    "and the sender's identity.\n\n"
    "CONTEXT:\n"
    "- The sender is most likely the contact name at the top of the active "
    "chat window, or the phone number in the message bubble.\n"
    "- Messages may be messy or contain conversational text.\n"
    "- Ignore messages that do not contain a distinct 6-digit code.\n\n"
    "RULES:\n"
    "1. Extract the sender name or number. Look at the chat header or the "
    "message metadata.\n"
    "2. Extract the 6-digit code. Remove spaces, dashes or hyphens "
    "(\"123-456\" -> \"123456\").\n"
    "3. If multiple codes are visible, extract each of them as a separate entry.\n"
    "4. If a code is split across lines, join it.\n"
    "5. High confidence only. If it looks like a phone number and not a code, "
    "ignore it.\n"
)


class ExtractionBackend(ABC):
    """
    All extraction strategies implement this interface.
    Callers get CandidateRecords back and never know which backend ran.
    """

    name = 'base'

    @abstractmethod
    def is_available(self) -> bool:
        """
        Returns True if the backend is reachable and ready.
        Called before monitoring starts so codewatch can fail fast.
        """
        ...

    @abstractmethod
    def analyze_image(self, image_bytes: bytes, mime_type: str) -> List[CandidateRecord]:
        """
        Extract candidates from one encoded image.
        Raises BackendTransportError / BackendParseError.
        """
        ...

    @abstractmethod
    def extract_from_text(self, text: str) -> List[CandidateRecord]:
        """
        Extract candidates from pasted text.
        Raises BackendTransportError / BackendParseError.
        """
        ...

    def extract_from_image(self, image_bytes: bytes, mime_type: str) -> List[CandidateRecord]:
        """Live path. Returns [] on any backend failure."""
        try:
            return self.analyze_image(image_bytes, mime_type)
        except BackendError as e:
            logger.error(f"{self.name} image extraction failed: {e}")
            return []
