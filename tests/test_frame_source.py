import time

import numpy as np
import pytest

from anpr_stream.status import QueueSink, StatusChannel
from anpr_stream.video import FrameSlot, FrameSource, SourceState

from conftest import FakeCapture, ScriptedOpener, wait_until


def make_source(opener, reconnect_delay=0.02, status=None):
    return FrameSource("fake://camera", opener=opener, reconnect_delay=reconnect_delay,
                       stop_timeout=1.0, status=status)


def test_slot_copies_in_and_out():
    slot = FrameSlot()
    assert slot.snapshot() is None

    frame = np.zeros((4, 4, 3), dtype=np.uint8)
    slot.publish(frame)
    frame[:] = 255
    first = slot.snapshot()
    assert first.max() == 0
    first[:] = 7
    assert slot.snapshot().max() == 0
    assert slot.seq == 1


def test_slot_wait_for_frame():
    slot = FrameSlot()
    assert slot.wait_for_frame(0, timeout=0.01) is None
    slot.publish(np.ones((2, 2), dtype=np.uint8))
    assert slot.wait_for_frame(0, timeout=0.01) is not None
    assert slot.wait_for_frame(1, timeout=0.01) is None


def test_slot_snapshot_with_seq():
    slot = FrameSlot()
    assert slot.snapshot_with_seq() == (None, 0)

    slot.publish(np.full((2, 2), 3, dtype=np.uint8))
    slot.publish(np.full((2, 2), 5, dtype=np.uint8))
    frame, seq = slot.snapshot_with_seq()
    assert seq == 2
    assert frame.max() == 5


def test_connect_failures_stay_connecting_then_connect():
    opener = ScriptedOpener(failures=3)
    status = StatusChannel()
    history = status.subscribe(QueueSink())
    source = make_source(opener, status=status)
    source.start()
    try:
        assert wait_until(lambda: source.state == SourceState.CONNECTED)
        assert opener.calls == 4
        assert source.stats["connect_attempts"] == 4
        assert wait_until(lambda: source.latest_frame() is not None)
        text = [m.message for m in history.recent(50)]
        assert text.count("Failed to connect. Retrying in 0.02 seconds...") == 3
        assert "Camera connected. Ready to capture." in text
    finally:
        source.stop()


def test_endless_failures_never_terminal():
    opener = ScriptedOpener(failures=10 ** 6)
    source = make_source(opener, reconnect_delay=0.01)
    source.start()
    try:
        assert wait_until(lambda: opener.calls >= 5)
        assert source.state == SourceState.CONNECTING
        assert source.running
    finally:
        source.stop()


def test_opener_exception_is_a_failed_attempt():
    calls = []

    def opener(url):
        calls.append(url)
        if len(calls) == 1:
            raise OSError("no route to host")
        return FakeCapture()

    source = make_source(opener)
    source.start()
    try:
        assert wait_until(lambda: source.state == SourceState.CONNECTED)
        assert len(calls) == 2
    finally:
        source.stop()


def test_read_failure_reconnects():
    opener = ScriptedOpener(factory=lambda: FakeCapture(frames=3))
    source = make_source(opener)
    source.start()
    try:
        assert wait_until(lambda: source.stats["connects"] >= 2)
        assert source.stats["disconnects"] >= 1
        assert opener.captures[0].released
        assert source.stats["frames"] >= 3
    finally:
        source.stop()


def test_stop_is_idempotent_and_releases():
    opener = ScriptedOpener()
    source = make_source(opener)
    source.start()
    assert wait_until(lambda: source.state == SourceState.CONNECTED)

    t_start = time.time()
    source.stop()
    source.stop()
    assert time.time() - t_start < 2.0
    assert source.state == SourceState.STOPPED
    assert not source.running
    assert all(c.released for c in opener.captures)


def test_stop_interrupts_backoff():
    source = make_source(ScriptedOpener(failures=10 ** 6), reconnect_delay=30.0)
    source.start()
    assert wait_until(lambda: source.state == SourceState.CONNECTING)
    t_start = time.time()
    source.stop()
    assert time.time() - t_start < 1.5
    assert source.state == SourceState.STOPPED


def test_stopped_source_cannot_restart():
    source = make_source(ScriptedOpener())
    source.stop()
    with pytest.raises(RuntimeError):
        source.start()


def test_context_manager():
    with make_source(ScriptedOpener()) as source:
        assert wait_until(lambda: source.latest_frame() is not None)
    assert source.state == SourceState.STOPPED
