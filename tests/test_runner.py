import os
import threading

import numpy as np

from anpr_stream.annotate import CaptureArchive
from anpr_stream.log_store import EnrichedLogStore
from anpr_stream.video import SourceState

from conftest import PLATE, FakeDetector, FakeLookup, FakeOCR, wait_until


def messages(runner):
    return [m.message for m in runner.history.recent(50)]


def test_process_frame_commits_plate_once(make_runner, frame, cfg):
    lookup = FakeLookup()
    runner = make_runner(lookup=lookup)

    first = runner.process_frame(frame, origin="capture")
    second = runner.process_frame(frame, origin="capture")

    assert [r.stable_text for r in first.readings] == [PLATE]
    assert first.readings[0].valid and first.readings[0].new
    assert first.new_plates == [PLATE]
    assert second.valid_count == 1 and second.new_plates == []
    assert lookup.calls == [PLATE]
    assert runner.orchestrator.session.snapshot() == [PLATE]

    enriched = EnrichedLogStore(os.path.join(cfg["_root"], "outputs", "enriched_detection_log.csv"))
    assert [r.plate_text for r in enriched.read_records()] == [PLATE]


def test_noisy_reading_outvoted(make_runner, frame):
    # one misread in four: the majority stays on the plate
    ocr = FakeOCR(PLATE, PLATE, "MH12AC1284", PLATE)
    runner = make_runner(ocr=ocr)
    stable = [runner.process_frame(frame).readings[0].stable_text for _ in range(4)]
    assert stable == [PLATE] * 4


def test_invalid_reading_not_submitted(make_runner, frame):
    lookup = FakeLookup()
    runner = make_runner(ocr=FakeOCR("XX"), lookup=lookup)
    result = runner.process_frame(frame)
    assert len(result.readings) == 1
    assert not result.readings[0].valid
    assert lookup.calls == []


def test_detector_failure_is_contained(make_runner, frame):
    runner = make_runner(detector=FakeDetector(error=RuntimeError("CUDA error")))
    result = runner.process_frame(frame)
    assert result.readings == []
    assert result.rows == 0


def test_capture_without_frame(make_runner):
    runner = make_runner()
    assert not runner.capture_and_process()
    assert not runner.capture_busy
    assert messages(runner)[-1] == "Error: No frame available to capture."


def test_capture_reports_summary(make_runner, frame):
    runner = make_runner()
    runner.source.slot.publish(frame)

    assert runner.capture_and_process()
    runner.wait_capture(2.0)

    assert not runner.capture_busy
    assert runner.last_capture.new_plates == [PLATE]
    assert any(m.startswith("Processing complete. Detected 1 plates, validated 1")
               for m in messages(runner))
    assert [r.stable_text for r in runner.latest_readings()] == [PLATE]


def test_capture_busy_rejects_second(make_runner, frame):
    runner = make_runner(lookup=FakeLookup(delay=0.3))
    runner.source.slot.publish(frame)
    assert runner.capture_and_process()
    assert not runner.capture_and_process()
    runner.wait_capture(2.0)
    assert runner.orchestrator.session.snapshot() == [PLATE]


def test_capture_archive(make_runner, frame, tmp_path):
    runner = make_runner()
    runner.archive = CaptureArchive(str(tmp_path / "in"), str(tmp_path / "out"))
    runner.source.slot.publish(frame)

    runner.capture_and_process()
    runner.wait_capture(2.0)

    inputs = os.listdir(tmp_path / "in")
    outputs = os.listdir(tmp_path / "out")
    assert len(inputs) == 1 and inputs[0].startswith("capture_")
    assert len(outputs) == 1 and outputs[0].startswith("processed_")


def test_archive_failure_is_a_warning(make_runner, frame, tmp_path):
    class BrokenArchive:
        def save(self, frame, readings):
            raise OSError("disk full")

    runner = make_runner()
    runner.archive = BrokenArchive()
    runner.source.slot.publish(frame)
    runner.capture_and_process()
    runner.wait_capture(2.0)

    assert runner.orchestrator.session.snapshot() == [PLATE]
    assert any(m.startswith("Capture images not saved") for m in messages(runner))
    assert messages(runner)[-1].startswith("Processing complete.")


def test_live_scanning(make_runner, frame):
    detector = FakeDetector()
    runner = make_runner(detector=detector)
    runner.source.slot.publish(frame)

    assert runner.start_live()
    assert not runner.start_live()
    assert wait_until(lambda: PLATE in runner.orchestrator.session)
    # one frame in the slot is processed once
    assert wait_until(lambda: detector.calls == 1)
    runner.source.slot.publish(frame)
    assert wait_until(lambda: detector.calls == 2)

    runner.stop_live()
    assert not runner.live_running


def live_threads():
    return [t for t in threading.enumerate() if t.name == "Live"]


def test_restart_waits_for_slow_live_worker(make_runner, frame):
    detector = FakeDetector(delay=0.6)
    runner = make_runner(detector=detector, camera__stop_timeout=0.1)
    runner.source.slot.publish(frame)

    assert runner.start_live()
    assert wait_until(lambda: detector.calls == 1)
    # worker is inside the detector call, join times out
    runner.stop_live()
    assert runner.live_stopping and not runner.live_running

    assert not runner.start_live()
    assert len(live_threads()) == 1

    assert wait_until(lambda: not runner.live_stopping)
    assert live_threads() == []
    assert detector.calls == 1

    assert runner.start_live()
    assert len(live_threads()) == 1
    runner.stop_live()
    assert wait_until(lambda: live_threads() == [])


def test_live_and_capture_share_dedup(make_runner, frame):
    lookup = FakeLookup(delay=0.05)
    runner = make_runner(lookup=lookup)
    runner.source.slot.publish(frame)
    runner.start_live()
    runner.capture_and_process()
    runner.wait_capture(2.0)
    assert wait_until(lambda: len(lookup.calls) >= 1)
    runner.stop_live()
    assert lookup.calls == [PLATE]


def test_reset(make_runner, frame):
    lookup = FakeLookup()
    runner = make_runner(lookup=lookup)
    runner.process_frame(frame)
    runner.reset()
    assert runner.latest_readings() == []
    assert len(runner.orchestrator.session) == 0
    assert runner.process_frame(frame).new_plates == [PLATE]
    assert lookup.calls == [PLATE, PLATE]


def test_deferred_mode_then_batch(make_runner, frame, cfg):
    lookup = FakeLookup()
    runner = make_runner(lookup=lookup, enrichment__mode="deferred")
    runner.process_frame(frame)
    assert lookup.calls == []
    assert runner.batch_enricher.basic_store.read_plates() == [PLATE]

    assert runner.run_batch()
    runner.wait_batch(2.0)
    assert lookup.calls == [PLATE]
    assert not runner.batch_enricher.basic_store.exists()
    assert len(runner.batch_enricher.enriched_store.read_rows()) == 1


def test_start_stop_with_source(make_runner):
    runner = make_runner()
    runner.start()
    assert wait_until(lambda: runner.latest_frame() is not None)
    runner.start_live()
    runner.stop()
    assert runner.source.state == SourceState.STOPPED
    assert not runner.live_running


def test_snapshot_shape(make_runner, frame):
    runner = make_runner()
    runner.process_frame(frame)
    snap = runner.snapshot()
    assert snap["source_state"] == "disconnected"
    assert snap["session_plates"] == [PLATE]
    assert snap["readings"][0]["box"] == [220, 290, 420, 350]
    assert not snap["live"] and not snap["capture_busy"] and not snap["batch_busy"]
    assert isinstance(snap["messages"], list)


def test_frame_not_mutated_by_processing(make_runner):
    runner = make_runner()
    frame = np.full((640, 640, 3), 50, dtype=np.uint8)
    runner.source.slot.publish(frame)
    runner.capture_and_process()
    runner.wait_capture(2.0)
    assert runner.latest_frame().max() == 50
