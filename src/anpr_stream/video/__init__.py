# video module - stream opening and frame acquisition
from .decoder import open_capture, open_stream, DecoderBackend
from .source import FrameSource, FrameSlot, SourceState

__all__ = ["open_capture", "open_stream", "DecoderBackend", "FrameSource", "FrameSlot", "SourceState"]
