"""
codewatch/exporters/csv_exporter.py
Delimited-text export of accepted records. Read-only over the store.

Columns: Sender, Code, Original Context. Every field quoted; newlines in
the context collapse to spaces so each record stays on one row.
"""

import csv
import io
import logging
from pathlib import Path
from typing import Iterable, Optional

from codewatch.models.record import ExtractedRecord

logger = logging.getLogger(__name__)

CSV_HEADERS = ['Sender', 'Code', 'Original Context']
DEFAULT_FILENAME = 'codewatch_export.csv'


def _one_line(text: str) -> str:
    return ' '.join(text.replace('\r', '\n').split('\n'))


def export_csv(records: Iterable[ExtractedRecord], path: Optional[Path] = None) -> str:
    """
    Render records as CSV. Writes to path too if given.
    Returns the CSV text.
    """
    buf    = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator='\n')
    writer.writerow(CSV_HEADERS)

    count = 0
    for r in records:
        writer.writerow([r.sender, r.code, _one_line(r.original_message)])
        count += 1

    content = buf.getvalue()
    if path is not None:
        path = Path(path)
        path.write_text(content, encoding='utf-8-sig')   # BOM so Excel reads UTF-8
        logger.info(f"Exported {count} record(s) → {path}")
    return content
