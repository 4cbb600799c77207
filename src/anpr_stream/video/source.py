# source.py
# Live stream with auto-reconnect, publishing the latest frame into a guarded slot

import time
import numpy as np
from enum import Enum
from threading import Condition, Event, Lock, Thread
from typing import Callable, Optional, Tuple

from .decoder import open_capture


class SourceState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    STOPPED = "stopped"


class FrameSlot:
    """
    Most-recent-frame cell shared by acquisition, capture, live and render paths.

    One writer (the acquisition loop) replaces the frame; readers get a copy.
    The lock is held only for the copy, never across processing.
    """

    def __init__(self):
        self._frame: Optional[np.ndarray] = None
        self._seq = 0
        self._timestamp = 0.0
        self._cond = Condition(Lock())

    def publish(self, frame: np.ndarray):
        frame = frame.copy()
        with self._cond:
            self._frame = frame
            self._seq += 1
            self._timestamp = time.time()
            self._cond.notify_all()

    def snapshot(self) -> Optional[np.ndarray]:
        with self._cond:
            if self._frame is None:
                return None
            return self._frame.copy()

    def snapshot_with_seq(self) -> Tuple[Optional[np.ndarray], int]:
        """Frame copy and its sequence number, read under one lock."""
        with self._cond:
            if self._frame is None:
                return None, self._seq
            return self._frame.copy(), self._seq

    def wait_for_frame(self, after_seq: int = 0, timeout: Optional[float] = None) -> Optional[np.ndarray]:
        """Block until a frame newer than after_seq is published (or timeout)."""
        with self._cond:
            if not self._cond.wait_for(lambda: self._seq > after_seq and self._frame is not None, timeout):
                return None
            return self._frame.copy()

    def clear(self):
        with self._cond:
            self._frame = None

    @property
    def seq(self) -> int:
        with self._cond:
            return self._seq

    @property
    def timestamp(self) -> float:
        with self._cond:
            return self._timestamp


class FrameSource:
    """
    Acquisition state machine (one long-lived thread, sole writer of the slot).

        DISCONNECTED -> CONNECTING -> CONNECTED -> (read failure) -> DISCONNECTED
        any -> STOPPED on stop()

    Open failures wait `reconnect_delay` and retry forever; a read failure
    releases the handle and reconnects. Nothing here is fatal.

    opener(url) returns an object with read() -> (ok, frame), release() and
    optionally isOpened(); None or an exception means "not connected".
    """

    def __init__(
        self,
        url: str,
        opener: Callable[[str], object] = open_capture,
        reconnect_delay: float = 3.0,
        stop_timeout: float = 1.0,
        status=None,
        event_log=None,
        slot: Optional[FrameSlot] = None,
    ):
        self.url = url
        self.opener = opener
        self.reconnect_delay = reconnect_delay
        self.stop_timeout = stop_timeout
        self.status = status
        self.event_log = event_log
        self.slot = slot or FrameSlot()

        self._state = SourceState.DISCONNECTED
        self._state_lock = Lock()
        self._capture = None
        self._capture_lock = Lock()
        self._stop_event = Event()
        self._thread: Optional[Thread] = None

        self.stats = {
            "connect_attempts": 0,
            "connects": 0,
            "disconnects": 0,
            "frames": 0,
        }

    # =========================================================
    # Public API
    # =========================================================

    @property
    def state(self) -> SourceState:
        with self._state_lock:
            return self._state

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        if self.state == SourceState.STOPPED:
            raise RuntimeError("FrameSource was stopped; create a new one")
        self._stop_event.clear()
        self._thread = Thread(target=self._run, name="FrameSource", daemon=True)
        self._thread.start()

    def stop(self):
        """Idempotent. Join within stop_timeout, then release the handle regardless."""
        if self.state == SourceState.STOPPED and not self.running:
            return
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=self.stop_timeout)
            if self._thread.is_alive():
                self._report("warning", f"Acquisition loop did not stop within {self.stop_timeout}s, releasing stream")
        self._release_capture()
        self._set_state(SourceState.STOPPED)

    def latest_frame(self) -> Optional[np.ndarray]:
        return self.slot.snapshot()

    # =========================================================
    # Acquisition loop
    # =========================================================

    def _run(self):
        while not self._stop_event.is_set():
            capture = self._capture
            if capture is None:
                self._connect()
                continue

            try:
                ok, frame = capture.read()
            except Exception as e:
                if self.event_log:
                    self.event_log.log_error("FrameSource", "Read raised", e)
                ok, frame = False, None

            if self._stop_event.is_set():
                break

            if ok and frame is not None and getattr(frame, "size", 0) > 0:
                self.stats["frames"] += 1
                self.slot.publish(frame)
            else:
                self.stats["disconnects"] += 1
                self._report("warning", "Lost connection to camera. Attempting to reconnect...")
                self._release_capture()
                self._set_state(SourceState.DISCONNECTED)

        self._release_capture()

    def _connect(self):
        self._set_state(SourceState.CONNECTING)
        self._report("info", f"Connecting to {self.url}...")
        self.stats["connect_attempts"] += 1

        capture = self._open()
        if capture is None:
            self._report("warning", f"Failed to connect. Retrying in {self.reconnect_delay:g} seconds...")
            # Stop interrupts the backoff
            self._stop_event.wait(self.reconnect_delay)
            return

        if self._stop_event.is_set():
            capture.release()
            return

        with self._capture_lock:
            self._capture = capture
        self.stats["connects"] += 1
        self._set_state(SourceState.CONNECTED)
        self._report("info", "Camera connected. Ready to capture.")

    def _open(self):
        try:
            capture = self.opener(self.url)
        except Exception as e:
            if self.event_log:
                self.event_log.log_error("FrameSource", f"Open failed: {self.url}", e)
            return None
        if capture is None:
            return None
        is_opened = getattr(capture, "isOpened", None)
        if is_opened is not None and not is_opened():
            capture.release()
            return None
        return capture

    def _release_capture(self):
        with self._capture_lock:
            capture, self._capture = self._capture, None
        if capture is not None:
            try:
                capture.release()
            except Exception as e:
                if self.event_log:
                    self.event_log.log_error("FrameSource", "Release failed", e)

    def _set_state(self, state: SourceState):
        with self._state_lock:
            if self._state == state or self._state == SourceState.STOPPED:
                return
            old, self._state = self._state, state
        if self.event_log:
            self.event_log.log_event("FrameSource", "state", old=old.value, new=state.value)

    def _report(self, level: str, message: str):
        if self.status:
            self.status.publish("Camera", message, level)
        else:
            print(f"[Camera] {message}")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *args):
        self.stop()
