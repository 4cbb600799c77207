# integration.py
# Pipeline threads -> WebSocket broadcasts
#
# Status messages and new-plate events are produced on worker threads
# (FrameSource, Capture, Live, Batch). They are handed to the server's event
# loop with run_coroutine_threadsafe; nothing here blocks the producer.

import asyncio
from typing import Any, Optional

from ..status import StatusMessage
from .websocket import WebSocketManager


class PipelineEvents:
    """
    Usage (server lifespan):
        events = PipelineEvents(ws_manager)
        events.attach(asyncio.get_running_loop())
        runner.status.subscribe(events.status_sink)
        runner.orchestrator.add_listener(events.plate_committed)
    """

    def __init__(self, ws_manager: WebSocketManager):
        self.ws_manager = ws_manager
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def attach(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop

    def detach(self):
        self._loop = None

    @property
    def attached(self) -> bool:
        return self._loop is not None and not self._loop.is_closed()

    def _emit(self, channel: str, event: str, data: Any):
        if not self.attached:
            return
        asyncio.run_coroutine_threadsafe(
            self.ws_manager.broadcast(channel, event, data),
            self._loop,
        )

    # =========================================================
    # Events
    # =========================================================

    def status_sink(self, msg: StatusMessage):
        """StatusChannel sink."""
        self._emit("status", msg.level, msg.to_dict())

    def plate_committed(self, event: dict):
        """EnrichmentOrchestrator listener."""
        self._emit("plates", "new", event)

    def system_event(self, event: str, data: Any = None):
        self._emit("system", event, data or {})
