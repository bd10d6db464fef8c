"""
codewatch/capture/frame_source.py
Video-capture collaborator.

  acquire_screen()         -> ScreenSource   (raises CaptureUnavailable)
  VideoSource.current_frame() -> PIL image or None
  VideoSource.on_ended(cb)    cb fires once when the source goes away on its own
  VideoSource.release()       idempotent

ScreenSource grabs a monitor with mss. The display disappearing (session
locked, remote desktop closed, X server gone) is this source's "user stopped
sharing": the grab fails, ended callbacks fire, and no more frames come out.
"""

import io
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

import mss
from mss.exception import ScreenShotError
from PIL import Image

from codewatch.errors import CaptureUnavailable

logger = logging.getLogger(__name__)

FRAME_MIME_TYPE = 'image/jpeg'


class VideoSource(ABC):

    def __init__(self):
        self._callbacks: List[Callable[[], None]] = []
        self._ended    = False
        self._released = False
        self._cb_lock  = threading.Lock()

    @abstractmethod
    def current_frame(self) -> Optional[Image.Image]:
        """Snapshot of what the source shows now. None if no frame is available."""
        ...

    @property
    def ended(self) -> bool:
        return self._ended

    def on_ended(self, callback: Callable[[], None]) -> None:
        with self._cb_lock:
            self._callbacks.append(callback)

    def release(self) -> None:
        self._released = True

    def _signal_ended(self) -> None:
        with self._cb_lock:
            if self._ended:
                return
            self._ended = True
            callbacks = list(self._callbacks)
        logger.info(f"{type(self).__name__} ended")
        for cb in callbacks:
            try:
                cb()
            except Exception as e:
                logger.error(f"on_ended callback failed: {e}", exc_info=True)


class ScreenSource(VideoSource):

    def __init__(self, monitor_index: int = 1):
        super().__init__()
        try:
            with mss.mss() as sct:
                monitors = list(sct.monitors)
        except ScreenShotError as e:
            raise CaptureUnavailable(f"screen capture not supported here: {e}") from e

        # monitors[0] is the union of all screens, 1.. are physical displays
        if not 0 <= monitor_index < len(monitors):
            raise CaptureUnavailable(
                f"monitor {monitor_index} not found ({len(monitors) - 1} available)"
            )
        self.monitor_index = monitor_index
        self.monitor: Dict[str, int] = dict(monitors[monitor_index])

    def current_frame(self) -> Optional[Image.Image]:
        if self._released or self._ended:
            return None
        # mss handles are not shareable across threads; ticks run on workers
        try:
            with mss.mss() as sct:
                shot = sct.grab(self.monitor)
        except ScreenShotError as e:
            logger.warning(f"Screen grab failed, treating source as ended: {e}")
            self._signal_ended()
            return None
        if not shot.width or not shot.height:
            return None
        return Image.frombytes('RGB', shot.size, shot.bgra, 'raw', 'BGRX')


def acquire_screen(monitor_index: int = 1) -> ScreenSource:
    source = ScreenSource(monitor_index=monitor_index)
    logger.info(f"Acquired screen source: monitor {monitor_index} {source.monitor}")
    return source


def encode_frame(image: Image.Image, quality: int = 80) -> bytes:
    """JPEG-encode a frame for the backend."""
    buf = io.BytesIO()
    image.convert('RGB').save(buf, format='JPEG', quality=quality)
    return buf.getvalue()
