"""
codewatch/parsers/code_parser.py
Heuristic parser for recognized screen text (OCR output or pasted chat).

Sender heuristic: in a chat window the contact name is the header, i.e. the
first line of text. Skip lines that are just a clock time ("9:41", "12:05")
or the presence word "online".

Code pattern: six digits, optionally split 3+3 by one space or hyphen
("123456", "123 456", "123-456"). A match touching another digit on
either side is rejected so longer numbers (phone numbers, account numbers)
are never truncated into a code.
"""

import re
from typing import List, Optional, Sequence

from codewatch.models.record import UNKNOWN_SENDER, CandidateRecord

CODE_REGEX      = re.compile(r'(?<!\d)(\d{3}[- ]?\d{3})(?!\d)')
TIMESTAMP_LINE  = re.compile(r'^\d{1,2}:\d{2}$')
PRESENCE_WORDS  = frozenset({'online'})
OCR_CONFIDENCE  = 1.0


def probable_sender(lines: Sequence[str], default: str = UNKNOWN_SENDER) -> str:
    """First non-empty line that is not a bare HH:MM time or 'online'."""
    for line in lines:
        text = line.strip()
        if not text:
            continue
        if TIMESTAMP_LINE.match(text) or text.lower() in PRESENCE_WORDS:
            continue
        return text
    return default


def parse_text_for_codes(
    full_text:      str,
    default_sender: str = UNKNOWN_SENDER,
) -> List[CandidateRecord]:
    """
    One candidate per code match, all sharing default_sender.
    Context is the first source line containing the raw match.
    """
    lines = full_text.split('\n')
    results: List[CandidateRecord] = []

    for match in CODE_REGEX.finditer(full_text):
        raw   = match.group(1)
        clean = raw.replace('-', '').replace(' ', '')
        context = next((ln for ln in lines if raw in ln), raw)
        results.append(CandidateRecord(
            sender           = default_sender,
            code             = clean,
            original_message = context.strip(),
            confidence       = OCR_CONFIDENCE,
        ))

    return results


def parse_screen_text(full_text: str, sender: Optional[str] = None) -> List[CandidateRecord]:
    """Infer the sender from the text's own lines, then extract codes."""
    if sender is None:
        sender = probable_sender(full_text.split('\n'))
    return parse_text_for_codes(full_text, sender)
