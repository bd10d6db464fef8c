"""
tests/test_api.py
─────────────────────────────────────────────────────────────────────────────
Tests for codewatch.api — CodeWatchAPI class and the FastAPI app.

Coverage:
  - submit_text / submit_image: acceptance, dedup, input validation,
    backend failure → FAILED session, busy session → SubmissionRejected
  - delete then resubmit re-accepts; stale delete is a no-op
  - get_records filtering and pagination, clear_records, listeners
  - start_monitor / stop_monitor with an in-memory source
  - HTTP endpoints via FastAPI TestClient (httpx), status code mapping

The backend is a scripted fake — no Ollama or Tesseract required.
─────────────────────────────────────────────────────────────────────────────
"""

import base64
import io
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from codewatch.api import IMAGE_FAILED_MSG, TEXT_FAILED_MSG, CodeWatchAPI, _build_app
from codewatch.backends.base import ExtractionBackend
from codewatch.backends.ollama_adapter import OllamaVisionAdapter
from codewatch.capture.frame_source import VideoSource
from codewatch.errors import BackendParseError, CaptureUnavailable, SubmissionRejected
from codewatch.models.record import CandidateRecord
from codewatch.parsers.code_parser import parse_screen_text
from codewatch.session.state_machine import SessionState


# ── HELPERS ──────────────────────────────────────────────────────────────────

class FakeBackend(ExtractionBackend):
    """Text goes through the regex parser; images return image_result."""

    name = 'fake'

    def __init__(self):
        self.image_result = []
        self.error = None

    def is_available(self):
        return True

    def analyze_image(self, image_bytes, mime_type):
        if self.error:
            raise self.error
        return list(self.image_result)

    def extract_from_text(self, text):
        if self.error:
            raise self.error
        return parse_screen_text(text)


class StillSource(VideoSource):
    def current_frame(self):
        return Image.new('RGB', (8, 8))


def _api(acquire=None):
    return CodeWatchAPI(FakeBackend(), acquire=acquire or StillSource)


def _png_b64() -> str:
    buf = io.BytesIO()
    Image.new('RGB', (8, 8), 'white').save(buf, format='PNG')
    return base64.b64encode(buf.getvalue()).decode('ascii')


# ── TESTS: MANUAL SUBMISSIONS ────────────────────────────────────────────────

class TestSubmitText:
    def test_accepts_codes(self):
        api = _api()
        result = api.submit_text("Bank\nYour code is 123-456")
        assert result["status"] == "ok"
        assert result["accepted"] == 1
        assert result["records"][0]["code"] == "123456"
        assert result["records"][0]["sender"] == "Bank"
        assert api.session.state is SessionState.SUCCEEDED

    def test_resubmit_is_deduplicated(self):
        api = _api()
        api.submit_text("Bank\n123456")
        again = api.submit_text("Bank\n123 456")
        assert again["candidates"] == 1
        assert again["accepted"] == 0
        assert len(api.store) == 1

    def test_blank_text_rejected(self):
        api = _api()
        with pytest.raises(ValueError):
            api.submit_text("   ")
        assert api.session.state is SessionState.IDLE

    def test_backend_failure_sets_failed_state(self):
        api = _api()
        api.backend.error = BackendParseError("bad json")
        with pytest.raises(BackendParseError):
            api.submit_text("Bank 123456")
        assert api.session.state is SessionState.FAILED
        assert api.session.error_message == TEXT_FAILED_MSG
        assert not api.session.manual_in_flight

    def test_busy_session_rejects(self):
        api = _api()
        api.session.begin_manual()
        with pytest.raises(SubmissionRejected):
            api.submit_text("Bank 123456")
        assert len(api.store) == 0

    def test_malformed_backend_output_releases_session(self):
        api = _api()
        api.backend.extract_from_text = lambda text: [{"sender": "Bank", "code": "123456"}]
        with pytest.raises(AttributeError):
            api.submit_text("Bank 123456")
        assert api.session.state is SessionState.FAILED
        assert api.session.error_message == TEXT_FAILED_MSG
        assert not api.session.manual_in_flight

        del api.backend.extract_from_text
        assert api.submit_text("Bank\n123456")["accepted"] == 1
        assert api.session.state is SessionState.SUCCEEDED


class TestSubmitImage:
    def test_accepts_backend_candidates(self):
        api = _api()
        api.backend.image_result = [
            CandidateRecord("Jane Doe", "123 456", "Your code is 123 456 today", 0.8),
            CandidateRecord("Jane Doe", "123456789", "not a code"),
        ]
        result = api.submit_image(b"png-bytes", "image/png")
        assert result["candidates"] == 2
        assert result["accepted"] == 1
        assert api.store[0].confidence == 0.8

    @pytest.mark.parametrize("data,mime", [(b"", "image/png"), (b"x", "text/plain")])
    def test_bad_input(self, data, mime):
        with pytest.raises(ValueError):
            _api().submit_image(data, mime)

    def test_failure_message(self):
        api = _api()
        api.backend.error = BackendParseError("garbage")
        with pytest.raises(BackendParseError):
            api.submit_image(b"x", "image/jpeg")
        assert api.session.error_message == IMAGE_FAILED_MSG


# ── TESTS: RECORDS ───────────────────────────────────────────────────────────

class TestRecords:
    def _filled(self):
        api = _api()
        api.submit_text("Bank\n111111")
        api.submit_text("Shop\n222222")
        api.submit_text("Bank\n333333")
        return api

    def test_get_records_with_index(self):
        rows = self._filled().get_records()
        assert [(r["index"], r["code"]) for r in rows] == [(0, "111111"), (1, "222222"), (2, "333333")]

    def test_query_keeps_store_index(self):
        rows = self._filled().get_records(query="bank")
        assert [r["index"] for r in rows] == [0, 2]

    def test_pagination(self):
        rows = self._filled().get_records(limit=1, offset=1)
        assert [r["code"] for r in rows] == ["222222"]

    def test_delete_then_resubmit_reaccepts(self):
        api = self._filled()
        removed = api.delete_record(0)
        assert removed["code"] == "111111"
        assert api.submit_text("Bank\n111111")["accepted"] == 1
        assert [r.code for r in api.store] == ["222222", "333333", "111111"]

    def test_stale_delete_is_noop(self):
        api = self._filled()
        assert api.delete_record(99) is None
        assert len(api.store) == 3

    def test_clear_records(self):
        api = self._filled()
        api.clear_records()
        assert api.get_records() == []
        assert api.submit_text("Bank\n111111")["accepted"] == 1

    def test_export_csv(self):
        csv_text = self._filled().export_csv(query="shop")
        assert csv_text.splitlines() == [
            '"Sender","Code","Original Context"',
            '"Shop","222222","222222"',
        ]


class TestListeners:
    def test_listener_gets_new_records_only(self):
        api = _api()
        seen = MagicMock()
        api.add_listener(seen)
        api.submit_text("Bank\n111111")
        api.submit_text("Bank\n111111")
        seen.assert_called_once()
        assert seen.call_args[0][0][0].code == "111111"

    def test_failing_listener_does_not_break_merge(self):
        api = _api()
        api.add_listener(MagicMock(side_effect=RuntimeError("ui gone")))
        assert api.submit_text("Bank\n111111")["accepted"] == 1

    def test_frame_results_merge_into_store(self):
        api = _api()
        accepted = api.handle_frame_results([CandidateRecord("Bank", "444-444", "x")])
        assert [r.code for r in accepted] == ["444444"]
        assert len(api.store) == 1


# ── TESTS: MONITOR ───────────────────────────────────────────────────────────

class TestMonitor:
    def test_start_and_stop(self):
        api = _api()
        status = api.start_monitor()
        assert status["loop_state"] == "RUNNING"
        assert status["monitoring"] is True
        status = api.stop_monitor()
        assert status["loop_state"] == "STOPPED"
        assert status["monitoring"] is False

    def test_capture_unavailable(self):
        def denied():
            raise CaptureUnavailable("no display")

        api = _api(acquire=denied)
        with pytest.raises(CaptureUnavailable):
            api.start_monitor()
        assert api.get_status()["loop_state"] == "STOPPED"


# ── TESTS: HTTP ──────────────────────────────────────────────────────────────

@pytest.fixture
def api():
    return _api()


@pytest.fixture
def client(api):
    with TestClient(_build_app(api=api)) as c:
        yield c


class TestHTTP:
    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["backend"] == "fake"

    def test_extract_text(self, client):
        r = client.post("/extract/text", json={"text": "Bank\nYour code is 123456"})
        assert r.status_code == 200
        assert r.json()["accepted"] == 1

    def test_extract_text_blank_is_400(self, client):
        assert client.post("/extract/text", json={"text": " "}).status_code == 400

    def test_backend_error_is_502(self, client, api):
        api.backend.error = BackendParseError("bad")
        r = client.post("/extract/text", json={"text": "Bank 123456"})
        assert r.status_code == 502
        assert r.json()["detail"] == TEXT_FAILED_MSG

    def test_busy_is_409(self, client, api):
        api.session.begin_manual()
        assert client.post("/extract/text", json={"text": "Bank 123456"}).status_code == 409

    def test_extract_image_data_url(self, client, api):
        api.backend.image_result = [CandidateRecord("Jane Doe", "123456", "code")]
        r = client.post("/extract/image", json={"image_base64": "data:image/png;base64," + _png_b64()})
        assert r.status_code == 200
        assert r.json()["records"][0]["sender"] == "Jane Doe"

    def test_extract_image_bad_base64(self, client):
        r = client.post("/extract/image", json={"image_base64": "%%%not-base64%%%"})
        assert r.status_code == 400

    def test_undecodable_ollama_reply_is_502(self):
        resp = MagicMock()
        resp.read.return_value = b"\xff\xfe garbage"
        reply = MagicMock()
        reply.__enter__.return_value = resp
        reply.__exit__.return_value = False

        api = CodeWatchAPI(OllamaVisionAdapter(), acquire=StillSource)
        with patch("codewatch.backends.ollama_adapter.urllib.request.urlopen", return_value=reply):
            with TestClient(_build_app(api=api)) as c:
                r = c.post("/extract/image", json={"image_base64": _png_b64(), "mime_type": "image/png"})
        assert r.status_code == 502
        assert r.json()["detail"] == IMAGE_FAILED_MSG
        assert not api.session.manual_in_flight

    def test_records_roundtrip(self, client):
        client.post("/extract/text", json={"text": "Bank\n111111"})
        client.post("/extract/text", json={"text": "Shop\n222222"})

        r = client.get("/records", params={"q": "shop"})
        assert r.json()["count"] == 1
        assert r.json()["records"][0]["index"] == 1

        r = client.delete("/records/0")
        assert r.json()["removed"] is True
        assert r.json()["record"]["code"] == "111111"

        r = client.delete("/records/7")
        assert r.json() == {"removed": False, "record": None}

        client.delete("/records")
        assert client.get("/records").json()["count"] == 0

    def test_export_csv(self, client):
        client.post("/extract/text", json={"text": "Bank\n111111"})
        r = client.get("/export.csv")
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/csv")
        assert "attachment" in r.headers["content-disposition"]
        assert '"Bank","111111"' in r.text

    def test_monitor_endpoints(self, client):
        r = client.post("/monitor/start")
        assert r.status_code == 200
        assert r.json()["loop_state"] == "RUNNING"
        r = client.post("/monitor/stop")
        assert r.json()["loop_state"] == "STOPPED"

    def test_monitor_unavailable_is_503(self):
        def denied():
            raise CaptureUnavailable("no display")

        with TestClient(_build_app(api=_api(acquire=denied))) as c:
            assert c.post("/monitor/start").status_code == 503

    def test_status(self, client):
        r = client.get("/status")
        assert r.status_code == 200
        body = r.json()
        assert body["state"] == "IDLE"
        assert body["record_count"] == 0
        assert body["backend"] == "fake"
