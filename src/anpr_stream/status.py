# status.py
# Status / progress channel: short human-readable messages for whatever
# presentation layer is attached (console, API, WebSocket).
#
# Full detail (tracebacks, raw values) goes to EventLog (file_logger.py).

import time
from collections import deque
from dataclasses import dataclass, asdict
from threading import Lock
from typing import Callable, Deque, List, Optional


@dataclass
class StatusMessage:
    source: str
    message: str
    level: str = "info"   # info | warning | error
    timestamp: float = 0.0

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = time.time()

    def to_dict(self) -> dict:
        return asdict(self)


Sink = Callable[[StatusMessage], None]


class StatusChannel:
    """Thread-safe fan-out of status messages to subscribed sinks."""

    def __init__(self):
        self._sinks: List[Sink] = []
        self._lock = Lock()

    def subscribe(self, sink: Sink) -> Sink:
        with self._lock:
            self._sinks.append(sink)
        return sink

    def unsubscribe(self, sink: Sink):
        with self._lock:
            if sink in self._sinks:
                self._sinks.remove(sink)

    def publish(self, source: str, message: str, level: str = "info"):
        msg = StatusMessage(source=source, message=message, level=level)
        with self._lock:
            sinks = list(self._sinks)
        for sink in sinks:
            try:
                sink(msg)
            except Exception as e:
                # A broken sink must not break the pipeline
                print(f"[StatusChannel] Sink error: {e}")


class ConsoleSink:
    """Prints `[Source] message`."""

    def __init__(self, show_level: bool = False):
        self.show_level = show_level

    def __call__(self, msg: StatusMessage):
        prefix = f"[{msg.source}]"
        if self.show_level and msg.level != "info":
            prefix += f" {msg.level.upper()}:"
        print(f"{prefix} {msg.message}")


class QueueSink:
    """Keeps the last N messages for polling clients."""

    def __init__(self, maxlen: int = 50):
        self._items: Deque[StatusMessage] = deque(maxlen=maxlen)
        self._lock = Lock()

    def __call__(self, msg: StatusMessage):
        with self._lock:
            self._items.append(msg)

    def recent(self, n: int = 20) -> List[StatusMessage]:
        with self._lock:
            items = list(self._items)
        return items[-n:]

    @property
    def last(self) -> Optional[StatusMessage]:
        with self._lock:
            return self._items[-1] if self._items else None
