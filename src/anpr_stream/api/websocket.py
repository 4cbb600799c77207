# websocket.py
# WebSocket channel manager for status / plate / system events

import asyncio
import json
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Set

from fastapi import WebSocket

CHANNELS = ("status", "plates", "system")


@dataclass
class WSMessage:
    channel: str
    event: str
    data: Any
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now().isoformat()

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False, default=str)


class WebSocketManager:
    """
    Channels:
        status  - StatusChannel messages (progress, warnings, errors)
        plates  - newly committed plates with their lookup result
        system  - live/capture/enrich started, session reset

    Client protocol:
        {"action": "subscribe", "channel": "plates"}
        {"action": "unsubscribe", "channel": "plates"}
        {"action": "ping"}
    """

    def __init__(self):
        self._subscriptions: Dict[str, Set[WebSocket]] = {}
        self._ws_channels: Dict[WebSocket, Set[str]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        async with self._lock:
            self._ws_channels[websocket] = set()

    async def disconnect(self, websocket: WebSocket):
        async with self._lock:
            for channel in self._ws_channels.pop(websocket, set()):
                subscribers = self._subscriptions.get(channel)
                if subscribers is not None:
                    subscribers.discard(websocket)
                    if not subscribers:
                        del self._subscriptions[channel]

    async def subscribe(self, websocket: WebSocket, channel: str):
        if channel not in CHANNELS:
            await self._send(websocket, WSMessage("system", "error", {"unknown_channel": channel}))
            return
        async with self._lock:
            self._subscriptions.setdefault(channel, set()).add(websocket)
            if websocket in self._ws_channels:
                self._ws_channels[websocket].add(channel)
        await self._send(websocket, WSMessage(channel, "subscribed", {"channel": channel}))

    async def unsubscribe(self, websocket: WebSocket, channel: str):
        async with self._lock:
            subscribers = self._subscriptions.get(channel)
            if subscribers is not None:
                subscribers.discard(websocket)
                if not subscribers:
                    del self._subscriptions[channel]
            if websocket in self._ws_channels:
                self._ws_channels[websocket].discard(channel)
        await self._send(websocket, WSMessage(channel, "unsubscribed", {"channel": channel}))

    async def broadcast(self, channel: str, event: str, data: Any):
        message = WSMessage(channel=channel, event=event, data=data)

        async with self._lock:
            subscribers = self._subscriptions.get(channel, set()).copy()

        disconnected = []
        for ws in subscribers:
            try:
                await ws.send_text(message.to_json())
            except Exception:
                disconnected.append(ws)

        for ws in disconnected:
            await self.disconnect(ws)

    async def _send(self, websocket: WebSocket, message: WSMessage):
        try:
            await websocket.send_text(message.to_json())
        except Exception:
            await self.disconnect(websocket)

    async def handle_message(self, websocket: WebSocket, data: str):
        try:
            msg = json.loads(data)
        except json.JSONDecodeError:
            await self._send(websocket, WSMessage("system", "error", {"detail": "invalid JSON"}))
            return
        if not isinstance(msg, dict):
            return

        action = msg.get("action")
        channel = msg.get("channel")
        if action == "subscribe" and channel:
            await self.subscribe(websocket, channel)
        elif action == "unsubscribe" and channel:
            await self.unsubscribe(websocket, channel)
        elif action == "ping":
            await self._send(websocket, WSMessage("system", "pong", {}))

    def get_stats(self) -> dict:
        return {
            "total_connections": len(self._ws_channels),
            "channels": {ch: len(subs) for ch, subs in self._subscriptions.items()},
        }
