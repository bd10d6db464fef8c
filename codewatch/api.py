"""
codewatch/api.py
─────────────────────────────────────────────────────────────────────────────
codewatch — Dual-mode API layer

TWO USAGE MODES:
  1. Importable module:
         from codewatch.api import CodeWatchAPI
         api = CodeWatchAPI.from_config(load_config())
         api.start_monitor()
         records = api.get_records(query="bank")

  2. FastAPI HTTP server (browser UI via fetch()):
         python -m codewatch.api                   # default: port 8766
         python -m codewatch.api --port 9000
         uvicorn codewatch.api:app --port 8766

ENDPOINTS:
  POST   /monitor/start    — acquire the screen and start capturing every N seconds
  POST   /monitor/stop     — stop capturing, release the screen
  POST   /extract/image    — one-shot screenshot upload (base64 JSON body)
  POST   /extract/text     — one-shot pasted text
  GET    /records          — accepted records, optional ?q= filter on sender/code
  DELETE /records/{index}  — delete one record (its sender+code can be detected again)
  DELETE /records          — clear all records and dedup history
  GET    /status           — session + capture loop state
  GET    /export.csv       — CSV export of current records
  GET    /health           — liveness

CORS: localhost-only (127.0.0.1 / ::1). Not exposed to network by default.

PRIVACY NOTE:
  Screenshots go only to the configured backend. With backend=ocr or a local
  Ollama, nothing leaves the device. Records live in memory only.
─────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import base64
import binascii
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel

from codewatch import __version__
from codewatch.backends.base import ExtractionBackend
from codewatch.capture.capture_loop import CaptureLoop
from codewatch.capture.frame_source import VideoSource, acquire_screen
from codewatch.config import DEFAULT_CONFIG, build_backend, ensure_config
from codewatch.errors import (
    BackendError,
    CaptureUnavailable,
    SubmissionRejected,
)
from codewatch.exporters.csv_exporter import DEFAULT_FILENAME, export_csv
from codewatch.models.record import CandidateRecord, ExtractedRecord
from codewatch.session.state_machine import ExtractionSession
from codewatch.store.result_store import ResultStore, matches_query

logger = logging.getLogger(__name__)

IMAGE_FAILED_MSG = "Failed to analyze image. Please try a clearer screenshot."
TEXT_FAILED_MSG  = "Failed to process text."
BUSY_MSG         = "Another submission is still being processed."


# ═══════════════════════════════════════════════════════════════════════════
# IMPORTABLE CLASS
# ═══════════════════════════════════════════════════════════════════════════

class CodeWatchAPI:
    """
    Wires backend → dedup/store, owns the session state machine and the
    capture loop. No HTTP layer required — import and call directly.
    """

    def __init__(
        self,
        backend: ExtractionBackend,
        config:  Optional[Dict[str, Any]]             = None,
        acquire: Optional[Callable[[], VideoSource]]  = None,
        store:   Optional[ResultStore]                = None,
        session: Optional[ExtractionSession]          = None,
    ):
        self.config  = {**DEFAULT_CONFIG, **(config or {})}
        self.backend = backend
        self.store   = store or ResultStore()
        self.session = session or ExtractionSession()
        self._listeners: List[Callable[[List[ExtractedRecord]], None]] = []

        monitor_index = int(self.config["monitor_index"])
        self.loop = CaptureLoop(
            acquire      = acquire or (lambda: acquire_screen(monitor_index)),
            backend      = backend,
            sink         = self.handle_frame_results,
            interval_sec = float(self.config["capture_interval_sec"]),
            jpeg_quality = int(self.config["jpeg_quality"]),
            session      = self.session,
        )

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "CodeWatchAPI":
        return cls(build_backend(config), config=config)

    def add_listener(self, callback: Callable[[List[ExtractedRecord]], None]) -> None:
        """callback(new_records) after every batch that accepted something."""
        self._listeners.append(callback)

    # ── MERGE ─────────────────────────────────────────────────────────────

    def _merge(self, candidates: List[CandidateRecord]) -> List[ExtractedRecord]:
        accepted = self.store.ingest(candidates)
        if accepted:
            for cb in list(self._listeners):
                try:
                    cb(accepted)
                except Exception as exc:
                    logger.error(f"Record listener failed: {exc}", exc_info=True)
        return accepted

    def handle_frame_results(self, candidates: List[CandidateRecord]) -> List[ExtractedRecord]:
        """Capture-loop sink."""
        return self._merge(candidates)

    # ── LIVE MONITOR ──────────────────────────────────────────────────────

    def start_monitor(self) -> Dict[str, Any]:
        """Raises CaptureUnavailable if the screen cannot be captured."""
        self.session.reset()
        self.loop.start()
        return self.get_status()

    def stop_monitor(self) -> Dict[str, Any]:
        self.loop.stop()
        return self.get_status()

    # ── ONE-SHOT SUBMISSIONS ──────────────────────────────────────────────

    def submit_image(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> Dict[str, Any]:
        """
        Uploaded screenshot. Uses the backend's raising image path so the
        caller learns about failures.

        Raises:
            ValueError:         empty payload or non-image mime type
            SubmissionRejected: a previous submission is still in flight
            BackendError:       backend failed; session is FAILED
        """
        if not image_bytes:
            raise ValueError("image is empty")
        if not (mime_type or "").startswith("image/"):
            raise ValueError(f"not an image mime type: {mime_type!r}")
        return self._run_manual(
            "image",
            lambda: self.backend.analyze_image(image_bytes, mime_type),
            IMAGE_FAILED_MSG,
        )

    def submit_text(self, text: str) -> Dict[str, Any]:
        """Pasted text. Same error contract as submit_image."""
        if not (text or "").strip():
            raise ValueError("text is empty")
        return self._run_manual(
            "text",
            lambda: self.backend.extract_from_text(text),
            TEXT_FAILED_MSG,
        )

    def _run_manual(
        self,
        kind:        str,
        extract:     Callable[[], List[CandidateRecord]],
        failure_msg: str,
    ) -> Dict[str, Any]:
        if not self.session.begin_manual():
            raise SubmissionRejected(BUSY_MSG)

        self.session.awaiting_backend(live=False)
        try:
            candidates = extract()
            accepted   = self._merge(candidates)
        except BackendError as exc:
            logger.error(f"Manual {kind} submission failed: {exc}")
            self.session.fail_manual(failure_msg)
            raise
        except Exception as exc:
            logger.error(f"Manual {kind} submission crashed: {exc}", exc_info=True)
            self.session.fail_manual(failure_msg)
            raise

        self.session.complete_manual(len(accepted))
        logger.info(
            f"Manual {kind}: {len(candidates)} candidate(s), {len(accepted)} new"
        )
        return {
            "status":     "ok",
            "candidates": len(candidates),
            "accepted":   len(accepted),
            "records":    [r.to_dict() for r in accepted],
        }

    # ── RECORDS ───────────────────────────────────────────────────────────

    def get_records(
        self,
        query:  Optional[str] = None,
        limit:  int           = 100,
        offset: int           = 0,
    ) -> List[Dict[str, Any]]:
        """
        Accepted records in arrival order. Each dict carries its store
        index so callers can delete_record() it.

        Args:
            query:  case-insensitive sender match or code substring
            limit:  max rows returned (default 100, max enforced: 1000)
            offset: pagination offset
        """
        limit  = min(int(limit), 1000)
        offset = max(int(offset), 0)
        rows = [
            {"index": i, **r.to_dict()}
            for i, r in enumerate(self.store.records())
            if matches_query(r, query)
        ]
        return rows[offset:offset + limit]

    def delete_record(self, index: int) -> Optional[Dict[str, Any]]:
        """Returns the removed record, or None for a stale/out-of-range index."""
        removed = self.store.remove_at(index)
        return removed.to_dict() if removed else None

    def clear_records(self) -> None:
        self.store.clear()
        self.session.reset()

    def export_csv(self, path: Optional[Path] = None, query: Optional[str] = None) -> str:
        return export_csv(self.store.search(query or ""), path=path)

    # ── STATUS ────────────────────────────────────────────────────────────

    def get_status(self) -> Dict[str, Any]:
        return {
            **self.session.snapshot(),
            "loop_state":    self.loop.state.value,
            "interval_sec":  self.loop.interval_sec,
            "ticks_run":     self.loop.ticks_run,
            "ticks_skipped": self.loop.ticks_skipped,
            "record_count":  len(self.store),
            "backend":       self.backend.name,
        }


# ═══════════════════════════════════════════════════════════════════════════
# FASTAPI HTTP APP
# ═══════════════════════════════════════════════════════════════════════════

class ImageRequest(BaseModel):
    image_base64: str                 # raw base64 or a data: URL
    mime_type:    str = "image/jpeg"


class TextRequest(BaseModel):
    text: str


def _decode_image(req: ImageRequest) -> tuple:
    data, mime = req.image_base64, req.mime_type
    if data.startswith("data:"):
        header, _, data = data.partition(",")
        mime = header[5:].split(";")[0] or mime
    try:
        return base64.b64decode(data, validate=True), mime
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"image_base64 is not valid base64: {exc}")


def _build_app(
    config: Optional[Dict[str, Any]] = None,
    api:    Optional[CodeWatchAPI]   = None,
) -> FastAPI:
    """
    Build and return the FastAPI application instance.
    Called once at module level or on demand (tests pass their own api).
    """
    _api = api or CodeWatchAPI.from_config(config or ensure_config())

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        _api.stop_monitor()

    _app = FastAPI(
        title       = "codewatch API",
        description = "Live verification-code extractor — local API",
        version     = __version__,
        docs_url    = "/docs",
        redoc_url   = None,
        lifespan    = lifespan,
    )
    _app.state.codewatch = _api

    # CORS: only allow localhost origins (UI runs as file:// or localhost)
    _app.add_middleware(
        CORSMiddleware,
        allow_origins     = [
            "http://localhost",
            "http://localhost:8766",
            "http://127.0.0.1",
            "http://127.0.0.1:8766",
            "null",   # file:// origin
        ],
        allow_methods     = ["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers     = ["Content-Type"],
        allow_credentials = False,
    )

    # ── ENDPOINTS ───────────────────────────────────────────────────────

    @_app.post("/monitor/start", summary="Start live screen monitoring")
    def monitor_start():
        try:
            return _api.start_monitor()
        except CaptureUnavailable as exc:
            raise HTTPException(status_code=503, detail=f"Screen capture unavailable: {exc}")

    @_app.post("/monitor/stop", summary="Stop live screen monitoring")
    def monitor_stop():
        return _api.stop_monitor()

    @_app.post("/extract/image", summary="Extract codes from an uploaded screenshot")
    def extract_image(req: ImageRequest):
        image_bytes, mime = _decode_image(req)
        return _submit(lambda: _api.submit_image(image_bytes, mime))

    @_app.post("/extract/text", summary="Extract codes from pasted text")
    def extract_text(req: TextRequest):
        return _submit(lambda: _api.submit_text(req.text))

    def _submit(call: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        try:
            return call()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        except SubmissionRejected as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        except BackendError:
            raise HTTPException(status_code=502, detail=_api.session.error_message)
        except Exception as exc:
            logger.error(f"Extraction endpoint error: {exc}", exc_info=True)
            raise HTTPException(status_code=500, detail=str(exc))

    @_app.get("/records", summary="List accepted records")
    def get_records(
        q:      Optional[str] = Query(None, description="Filter by sender or code"),
        limit:  int           = Query(100, ge=1, le=1000),
        offset: int           = Query(0,   ge=0),
    ):
        data = _api.get_records(query=q, limit=limit, offset=offset)
        return {"count": len(data), "records": data}

    @_app.delete("/records/{index}", summary="Delete one record")
    def delete_record(index: int):
        """Stale index is not an error — nothing is removed."""
        removed = _api.delete_record(index)
        return {"removed": removed is not None, "record": removed}

    @_app.delete("/records", summary="Clear all records")
    def clear_records():
        _api.clear_records()
        return {"status": "ok", "record_count": 0}

    @_app.get("/status", summary="Session and capture loop status")
    def get_status():
        return _api.get_status()

    @_app.get("/export.csv", summary="CSV export")
    def get_export(q: Optional[str] = Query(None)):
        content = _api.export_csv(query=q)
        return Response(
            content    = content,
            media_type = "text/csv; charset=utf-8",
            headers    = {"Content-Disposition": f'attachment; filename="{DEFAULT_FILENAME}"'},
        )

    @_app.get("/health", summary="Health check")
    def health():
        return {
            "status":  "ok",
            "backend": _api.backend.name,
            "version": __version__,
        }

    return _app


# Module-level app instance — used by uvicorn codewatch.api:app
app = _build_app()


# ═══════════════════════════════════════════════════════════════════════════
# CLI ENTRYPOINT — python -m codewatch.api
# ═══════════════════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(
        prog        = "codewatch.api",
        description = "codewatch API Server — serves the extractor UI on localhost",
    )
    parser.add_argument("--port", type=int, default=8766,
                        help="Port to bind (default: 8766)")
    parser.add_argument("--host", type=str, default="127.0.0.1",
                        help="Host to bind — DO NOT change to 0.0.0.0 on shared networks")
    args = parser.parse_args()

    logging.basicConfig(
        level   = logging.INFO,
        format  = '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt = '%H:%M:%S',
    )

    print(f"""
+--------------------------------------------------+
|   codewatch API Server v{__version__}                    |
+--------------------------------------------------+
|  Local:    http://{args.host}:{args.port}
|  Docs:     http://{args.host}:{args.port}/docs
|  Health:   http://{args.host}:{args.port}/health
+--------------------------------------------------+
""")

    uvicorn.run(app, host=args.host, port=args.port, log_level="info")
