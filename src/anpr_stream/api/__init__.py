# api module - HTTP / WebSocket control surface
from .server import create_app, start_server
from .websocket import WebSocketManager
from .integration import PipelineEvents
from .mjpeg import MJPEGStreamer

__all__ = [
    "create_app",
    "start_server",
    "WebSocketManager",
    "PipelineEvents",
    "MJPEGStreamer",
]
