# conftest.py
# Fakes for the detector, OCR, lookup and stream opener

import time
from threading import Lock

import numpy as np
import pytest

from anpr_stream import config as config_mod
from anpr_stream.lookup import VehicleDetails

PLATE = "MH12AC1234"

# One plate-shaped box in the middle of a 640x640 frame: corner box (220, 290, 420, 350)
PLATE_ROW = [320.0, 320.0, 200.0, 60.0, 0.9]


def wait_until(predicate, timeout=2.0, interval=0.01):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class FakeCapture:
    """read() yields `frames` good frames, then fails."""

    def __init__(self, frames=None, shape=(480, 640, 3)):
        self.remaining = frames
        self.shape = shape
        self.released = False

    def isOpened(self):
        return True

    def read(self):
        time.sleep(0.002)
        if self.remaining is not None:
            if self.remaining <= 0:
                return False, None
            self.remaining -= 1
        return True, np.full(self.shape, 128, dtype=np.uint8)

    def release(self):
        self.released = True


class ScriptedOpener:
    """Fails `failures` times, then hands out captures built by `factory`."""

    def __init__(self, failures=0, factory=FakeCapture):
        self.failures = failures
        self.factory = factory
        self.calls = 0
        self.captures = []
        self._lock = Lock()

    def __call__(self, url):
        with self._lock:
            self.calls += 1
            if self.calls <= self.failures:
                return None
            capture = self.factory()
            self.captures.append(capture)
            return capture


class FakeOCR:
    """Returns texts in turn (last one repeats). An Exception instance is raised."""

    def __init__(self, *texts):
        self.texts = list(texts) or [PLATE]
        self.calls = 0

    def __call__(self, crop):
        item = self.texts[min(self.calls, len(self.texts) - 1)]
        self.calls += 1
        if isinstance(item, Exception):
            raise item
        return item


class FakeDetector:
    def __init__(self, rows=None, error=None, delay=0.0):
        self.rows = [PLATE_ROW] if rows is None else rows
        self.error = error
        self.delay = delay
        self.calls = 0

    def __call__(self, frame):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [list(r) for r in self.rows]


class FakeLookup:
    """Thread-safe counting lookup. `details=None` means every plate is unknown."""

    def __init__(self, details=VehicleDetails("Test Owner", "Test Model", "2020-01-01"), delay=0.0):
        self.details = details
        self.delay = delay
        self.calls = []
        self._lock = Lock()

    def __call__(self, plate):
        with self._lock:
            self.calls.append(plate)
        if self.delay:
            time.sleep(self.delay)
        return self.details


@pytest.fixture
def frame():
    return np.zeros((640, 640, 3), dtype=np.uint8)


@pytest.fixture
def cfg(tmp_path):
    """Validated-shape config rooted at tmp_path, no files on disk needed."""
    cfg = config_mod._merge(config_mod.DEFAULTS, {
        "camera": {"url": "fake://camera", "reconnect_delay": 0.01, "stop_timeout": 1.0},
        "models": {"plate_detector": "models/none.pt"},
        "lookup": {"mode": "mock", "mock_delay": 0.0},
        "batch": {"request_delay": 0.0},
        "live": {"interval": 0.01},
        "output": {"save_images": False},
    })
    cfg["_root"] = str(tmp_path)
    return cfg


@pytest.fixture
def make_runner(cfg):
    """build_runner with fakes for every external collaborator."""
    from anpr_stream.pipeline_builder import build_runner, create_status

    def _make(detector=None, ocr=None, lookup=None, opener=None, **overrides):
        for dotted, value in overrides.items():
            section, key = dotted.split("__")
            cfg[section][key] = value
        status, history = create_status(console=False)
        return build_runner(
            cfg,
            status=status,
            history=history,
            detector=detector or FakeDetector(),
            ocr=ocr or FakeOCR(),
            lookup=lookup or FakeLookup(),
            opener=opener or ScriptedOpener(),
        )

    return _make
