"""
codewatch/backends/ocr_backend.py
Optical-recognition strategy: Tesseract via pytesseract, then the regex
heuristics in codewatch.parsers.code_parser.

INSTALL:
  Windows: https://github.com/UB-Mannheim/tesseract/wiki
  Linux:   apt install tesseract-ocr
  Termux:  pkg install tesseract

The engine is started lazily, once per process. Concurrent first calls wait
on the same initialization and share the one engine. A failed start is not
remembered, so the next call tries again.
"""

import io
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import pytesseract
from PIL import Image, UnidentifiedImageError

from codewatch.backends.base import ExtractionBackend
from codewatch.errors import BackendParseError, BackendTransportError
from codewatch.models.record import CandidateRecord
from codewatch.parsers.code_parser import parse_screen_text

logger = logging.getLogger(__name__)


@dataclass
class RecognizedText:
    """Full text plus its line segmentation."""
    text:  str
    lines: List[str]


class TesseractEngine:
    """One Tesseract configuration. Built only by get_engine()."""

    def __init__(self, lang: str = 'eng', tesseract_cmd: Optional[str] = None):
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        try:
            self.version = str(pytesseract.get_tesseract_version())
            installed    = set(pytesseract.get_languages(config=''))
        except (pytesseract.TesseractNotFoundError, OSError) as e:
            raise BackendTransportError(f"Tesseract not available: {e}") from e

        missing = [l for l in lang.split('+') if l not in installed]
        if missing:
            raise BackendTransportError(
                f"Tesseract language data missing: {missing}. Installed: {sorted(installed)}"
            )
        self.lang = lang
        logger.info(f"OCR engine initialized (tesseract {self.version}, lang={lang})")

    def recognize(self, image: Image.Image) -> RecognizedText:
        """
        One image_to_data pass. Words are regrouped into lines by
        (block, paragraph, line) in reading order.
        """
        try:
            data = pytesseract.image_to_data(
                image, lang=self.lang, output_type=pytesseract.Output.DICT,
            )
        except pytesseract.TesseractError as e:
            raise BackendTransportError(f"Tesseract failed: {e}") from e

        grouped: Dict[Tuple[int, int, int], List[str]] = {}
        for i, word in enumerate(data.get('text', [])):
            word = str(word or '').strip()
            if not word:
                continue
            key = (
                int(data['block_num'][i]),
                int(data['par_num'][i]),
                int(data['line_num'][i]),
            )
            grouped.setdefault(key, []).append(word)

        lines = [' '.join(words) for _key, words in sorted(grouped.items())]
        return RecognizedText(text='\n'.join(lines), lines=lines)


_engine: Optional[TesseractEngine] = None
_engine_lock = threading.Lock()


def get_engine(lang: str = 'eng', tesseract_cmd: Optional[str] = None) -> TesseractEngine:
    """Process-wide engine, created on first use."""
    global _engine
    if _engine is not None:
        return _engine
    with _engine_lock:
        if _engine is None:
            _engine = TesseractEngine(lang=lang, tesseract_cmd=tesseract_cmd)
    return _engine


def _reset_engine() -> None:
    global _engine
    with _engine_lock:
        _engine = None


class TesseractBackend(ExtractionBackend):

    name = 'ocr'

    def __init__(self, lang: str = 'eng', tesseract_cmd: Optional[str] = None):
        self.lang          = lang
        self.tesseract_cmd = tesseract_cmd

    def is_available(self) -> bool:
        try:
            get_engine(self.lang, self.tesseract_cmd)
            return True
        except BackendTransportError as e:
            logger.warning(str(e))
            return False

    def analyze_image(self, image_bytes: bytes, mime_type: str) -> List[CandidateRecord]:
        engine = get_engine(self.lang, self.tesseract_cmd)
        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                frame = img.convert('RGB')
        except (UnidentifiedImageError, OSError) as e:
            raise BackendParseError(f"cannot decode {mime_type} image: {e}") from e

        recognized = engine.recognize(frame)
        candidates = parse_screen_text(recognized.text)
        logger.debug(f"OCR: {len(recognized.lines)} lines, {len(candidates)} code match(es)")
        return candidates

    def extract_from_text(self, text: str) -> List[CandidateRecord]:
        return parse_screen_text(text)
