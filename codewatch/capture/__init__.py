from codewatch.capture.capture_loop import CaptureLoop, LoopState
from codewatch.capture.frame_source import VideoSource, acquire_screen, encode_frame

__all__ = ["CaptureLoop", "LoopState", "VideoSource", "acquire_screen", "encode_frame"]
