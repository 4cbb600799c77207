# decoder.py
# Opening a stream: FFmpeg -> default backend fallback
# RTSP buffer options are set once, before the first VideoCapture

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import cv2

from ..errors import StreamError

# Defaults for network streams; user settings win
if "OPENCV_FFMPEG_CAPTURE_OPTIONS" not in os.environ:
    os.environ["OPENCV_FFMPEG_CAPTURE_OPTIONS"] = "rtsp_transport;tcp|buffer_size;2097152|max_delay;200000"


class DecoderBackend(Enum):
    FFMPEG = "FFmpeg"
    ANY = "Default"
    NONE = "None"


@dataclass
class DecoderInfo:
    backend: DecoderBackend
    cap: Optional[cv2.VideoCapture]
    width: int = 0
    height: int = 0
    fps: float = 0.0


def _source_arg(url: str):
    # "0", "1" -> local camera index
    return int(url) if url.isdigit() else url


def _try_open(url: str, api_preference: int) -> Optional[cv2.VideoCapture]:
    try:
        cap = cv2.VideoCapture(_source_arg(url), api_preference)
    except cv2.error:
        return None
    if cap.isOpened():
        return cap
    cap.release()
    return None


def open_stream(url: str) -> DecoderInfo:
    """Try FFmpeg first, then let OpenCV pick. cap is None when nothing opened."""
    for backend, api in ((DecoderBackend.FFMPEG, cv2.CAP_FFMPEG), (DecoderBackend.ANY, cv2.CAP_ANY)):
        cap = _try_open(url, api)
        if cap is not None:
            return DecoderInfo(
                backend=backend,
                cap=cap,
                width=int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
                height=int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
                fps=cap.get(cv2.CAP_PROP_FPS) or 0.0,
            )
    return DecoderInfo(backend=DecoderBackend.NONE, cap=None)


def open_capture(url: str) -> cv2.VideoCapture:
    """Default FrameSource opener. Raises StreamError when no backend opens the url."""
    info = open_stream(url)
    if info.cap is None:
        raise StreamError(f"Could not open stream: {url}")
    print(f"[Decoder] {info.backend.value} {info.width}x{info.height} @ {info.fps:.1f} fps")
    return info.cap
