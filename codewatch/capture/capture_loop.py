"""
codewatch/capture/capture_loop.py
Periodic capture loop: every interval, snapshot the video source, send the
frame to the backend's live image path, forward candidates to the sink.

Architecture:
- Scheduler thread: waits on a stop event with the interval as timeout, so
  stop() cancels the next tick immediately.
- One worker thread per tick does capture + encode + backend call.
- Backpressure: a tick that finds the previous worker still running is
  skipped, not queued. A slow backend throttles capture instead of building
  a backlog.
- A worker that finishes after stop() (or after a restart) drops its result.
"""

import logging
import threading
from enum import Enum
from typing import Callable, List, Optional

from codewatch.backends.base import ExtractionBackend
from codewatch.capture.frame_source import FRAME_MIME_TYPE, VideoSource, encode_frame
from codewatch.models.record import CandidateRecord
from codewatch.session.state_machine import ExtractionSession

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SEC = 5.0


class LoopState(str, Enum):
    STOPPED = 'STOPPED'
    RUNNING = 'RUNNING'


class CaptureLoop:

    def __init__(
        self,
        acquire:      Callable[[], VideoSource],
        backend:      ExtractionBackend,
        sink:         Callable[[List[CandidateRecord]], object],
        interval_sec: float                        = DEFAULT_INTERVAL_SEC,
        jpeg_quality: int                          = 80,
        session:      Optional[ExtractionSession]  = None,
        name:         str                          = "CaptureLoop",
    ):
        """
        Args:
            acquire:      returns a fresh VideoSource; may raise CaptureUnavailable
            backend:      extraction strategy; only extract_from_image() is used
            sink:         receives each non-empty candidate batch
            interval_sec: seconds between ticks; first tick one interval after start
            session:      optional state machine to report live ticks to
        """
        self._acquire     = acquire
        self.backend      = backend
        self._sink        = sink
        self.interval_sec = interval_sec
        self.jpeg_quality = jpeg_quality
        self.session      = session or ExtractionSession()
        self.name         = name

        self._state  = LoopState.STOPPED
        self._source: Optional[VideoSource] = None
        self._stop_event = threading.Event()
        self._scheduler: Optional[threading.Thread] = None
        self._worker:    Optional[threading.Thread] = None
        self._inflight   = threading.Lock()     # held for the whole tick, across threads
        self._generation = 0
        self._lock       = threading.RLock()

        # Statistics
        self.ticks_run     = 0
        self.ticks_skipped = 0
        self.last_error: Optional[str] = None

    @property
    def state(self) -> LoopState:
        with self._lock:
            return self._state

    @property
    def running(self) -> bool:
        return self.state is LoopState.RUNNING

    # ── LIFECYCLE ────────────────────────────────────────────
    def start(self) -> None:
        """
        Acquire the source and begin ticking.
        CaptureUnavailable propagates to the caller; the loop stays STOPPED.
        """
        with self._lock:
            if self._state is LoopState.RUNNING:
                logger.warning(f"[{self.name}] Already running")
                return

            source = self._acquire()
            self._generation += 1
            generation = self._generation

            self._source     = source
            self._stop_event = threading.Event()
            self._state      = LoopState.RUNNING
            self._scheduler  = threading.Thread(
                target = self._schedule,
                args   = (self._stop_event,),
                name   = self.name,
                daemon = True,
            )
            self._scheduler.start()

        self.session.set_monitoring(True)
        source.on_ended(lambda: self._on_source_ended(generation))
        if source.ended:
            self._on_source_ended(generation)
            return
        logger.info(f"[{self.name}] Started — capturing every {self.interval_sec}s")

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel ticks and release the source. Safe to call when already stopped."""
        with self._lock:
            if self._state is LoopState.STOPPED and self._source is None:
                return
            self._state = LoopState.STOPPED
            self._generation += 1
            self._stop_event.set()
            scheduler, self._scheduler = self._scheduler, None
            source,    self._source    = self._source, None

        if source is not None:
            source.release()
        if scheduler is not None and scheduler is not threading.current_thread():
            scheduler.join(timeout=timeout)

        self.session.set_monitoring(False)
        logger.info(
            f"[{self.name}] Stopped. Ticks: {self.ticks_run}, skipped: {self.ticks_skipped}"
        )

    def _on_source_ended(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
        logger.info(f"[{self.name}] Source ended externally — stopping")
        self.stop()

    # ── TICKS ────────────────────────────────────────────────
    def _schedule(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval_sec):
            self.tick()

    def tick(self) -> bool:
        """
        Start one capture/extraction on a worker thread.
        Returns False if the loop is stopped or the previous tick is still in flight.
        """
        with self._lock:
            if self._state is not LoopState.RUNNING:
                return False
            if not self._inflight.acquire(blocking=False):
                self.ticks_skipped += 1
                logger.debug(f"[{self.name}] Tick skipped — previous extraction in flight")
                return False
            self._worker = threading.Thread(
                target = self._run_tick,
                args   = (self._generation, self._source),
                name   = f"{self.name}-tick",
                daemon = True,
            )
            self._worker.start()
        return True

    def _run_tick(self, generation: int, source: VideoSource) -> None:
        self.session.begin_live_tick()
        try:
            frame = source.current_frame()
            if frame is None:
                return
            image_bytes = encode_frame(frame, quality=self.jpeg_quality)

            self.session.awaiting_backend(live=True)
            candidates = self.backend.extract_from_image(image_bytes, FRAME_MIME_TYPE)
            self.ticks_run += 1

            if not self._is_current(generation):
                logger.debug(f"[{self.name}] Loop stopped during extraction — result discarded")
                return
            if candidates:
                self._sink(candidates)
        except Exception as e:
            self.last_error = str(e)
            logger.error(f"[{self.name}] Tick failed: {e}", exc_info=True)
        finally:
            self.session.end_live_tick()
            self._inflight.release()

    def _is_current(self, generation: int) -> bool:
        with self._lock:
            return self._state is LoopState.RUNNING and generation == self._generation

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the current tick's worker finishes. True if idle."""
        worker = self._worker
        if worker is not None:
            worker.join(timeout=timeout)
            return not worker.is_alive()
        return True
