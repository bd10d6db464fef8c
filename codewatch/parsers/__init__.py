from codewatch.parsers.code_parser import (
    CODE_REGEX,
    parse_screen_text,
    parse_text_for_codes,
    probable_sender,
)

__all__ = [
    "CODE_REGEX",
    "parse_screen_text",
    "parse_text_for_codes",
    "probable_sender",
]
