"""
tests/test_csv_export.py
Tests for codewatch.exporters.csv_exporter.
"""

import csv
import io

from codewatch.exporters.csv_exporter import CSV_HEADERS, export_csv
from codewatch.models.record import ExtractedRecord


def _rec(sender="Bank", code="123456", msg="Your code is 123456"):
    return ExtractedRecord(sender=sender, code=code, original_message=msg,
                           confidence=1.0, timestamp_ms=0)


class TestExportCSV:
    def test_header_only_when_empty(self):
        assert export_csv([]) == '"Sender","Code","Original Context"\n'

    def test_rows_fully_quoted(self):
        text = export_csv([_rec(), _rec("Shop", "654321", "x")])
        rows = list(csv.reader(io.StringIO(text)))
        assert rows[0] == CSV_HEADERS
        assert rows[1] == ["Bank", "123456", "Your code is 123456"]
        assert text.splitlines()[2] == '"Shop","654321","x"'

    def test_embedded_quotes_and_commas(self):
        text = export_csv([_rec(sender='Acme, "Inc"', msg='say "hi", ok')])
        rows = list(csv.reader(io.StringIO(text)))
        assert rows[1][0] == 'Acme, "Inc"'
        assert rows[1][2] == 'say "hi", ok'

    def test_newlines_collapsed(self):
        text = export_csv([_rec(msg="line one\nline two\r\nthree")])
        assert len(text.splitlines()) == 2
        assert "line one line two" in text

    def test_leading_zeros_kept(self):
        text = export_csv([_rec(code="012345")])
        assert '"012345"' in text

    def test_write_to_path(self, tmp_path):
        out = tmp_path / "codes.csv"
        text = export_csv([_rec()], path=out)
        assert out.read_text(encoding="utf-8-sig") == text
        assert out.read_bytes().startswith(b"\xef\xbb\xbf")
