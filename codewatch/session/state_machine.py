"""
codewatch/session/state_machine.py
Extraction session state.

  IDLE ──begin_live_tick──▶ CAPTURING ──awaiting_backend──▶ AWAITING_BACKEND ──end_live_tick──▶ IDLE
  IDLE / SUCCEEDED / FAILED ──begin_manual──▶ CAPTURING ──▶ AWAITING_BACKEND ──▶ SUCCEEDED | FAILED

Live mode always returns to IDLE (scanning, idle between ticks), success or
failure. Manual submissions (upload, paste) end in SUCCEEDED or FAILED and
stay there until the next user action. A manual submission is rejected while
a previous one is still in flight. The capture loop's own in-flight guard is
separate and does not consult this machine.
"""

import logging
import threading
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE             = 'IDLE'
    CAPTURING        = 'CAPTURING'
    AWAITING_BACKEND = 'AWAITING_BACKEND'
    SUCCEEDED        = 'SUCCEEDED'
    FAILED           = 'FAILED'


class ExtractionSession:

    def __init__(self):
        self._state           = SessionState.IDLE
        self._manual_inflight = False
        self._monitoring      = False
        self._error: Optional[str] = None
        self._last_accepted   = 0
        self._lock = threading.Lock()

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def error_message(self) -> Optional[str]:
        with self._lock:
            return self._error

    @property
    def manual_in_flight(self) -> bool:
        with self._lock:
            return self._manual_inflight

    @property
    def monitoring(self) -> bool:
        with self._lock:
            return self._monitoring

    # ── LIVE MODE ────────────────────────────────────────────
    def set_monitoring(self, active: bool) -> None:
        with self._lock:
            self._monitoring = bool(active)
            if not active and not self._manual_inflight and self._state in (
                SessionState.CAPTURING, SessionState.AWAITING_BACKEND,
            ):
                self._state = SessionState.IDLE

    def begin_live_tick(self) -> None:
        with self._lock:
            if not self._manual_inflight:
                self._state = SessionState.CAPTURING

    def awaiting_backend(self, live: bool = True) -> None:
        with self._lock:
            if live and self._manual_inflight:
                return
            self._state = SessionState.AWAITING_BACKEND

    def end_live_tick(self) -> None:
        """Back to IDLE whether the tick succeeded or failed."""
        with self._lock:
            if not self._manual_inflight:
                self._state = SessionState.IDLE

    # ── MANUAL SUBMISSIONS ───────────────────────────────────
    def begin_manual(self) -> bool:
        """
        Claim the session for a one-shot submission.
        Returns False (and changes nothing) if one is already in flight.
        """
        with self._lock:
            if self._manual_inflight:
                logger.info("Manual submission rejected — previous one still in flight")
                return False
            self._manual_inflight = True
            self._error = None
            self._state = SessionState.CAPTURING
            return True

    def complete_manual(self, accepted: int = 0) -> None:
        with self._lock:
            self._manual_inflight = False
            self._last_accepted   = int(accepted)
            self._state = SessionState.SUCCEEDED

    def fail_manual(self, message: str) -> None:
        with self._lock:
            self._manual_inflight = False
            self._error = message
            self._state = SessionState.FAILED

    def reset(self) -> None:
        with self._lock:
            if self._manual_inflight:
                return
            self._error = None
            self._state = SessionState.IDLE

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "state":            self._state.value,
                "monitoring":       self._monitoring,
                "manual_in_flight": self._manual_inflight,
                "error":            self._error,
                "last_accepted":    self._last_accepted,
            }
