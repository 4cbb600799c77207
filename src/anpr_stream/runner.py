# runner.py
# Pipeline glue: acquisition thread + capture / live / batch workers
#
#   FrameSource thread ──> FrameSlot ──┬─> capture worker (one-shot)
#                                      ├─> live worker (~5 Hz)
#                                      └─> render (snapshot / MJPEG)
#
# Capture and live share one DetectionStage / StabilizationEngine /
# EnrichmentOrchestrator; the session dedup set makes the at-most-once
# guarantee hold across both.

import time
from dataclasses import dataclass, field
from threading import Event, Lock, Thread
from typing import Callable, List, Optional, Sequence

import numpy as np

from .detection import BucketId, Detection, DetectionStage, DEFAULT_BUCKET_FACTOR
from .enrichment import EnrichmentOrchestrator
from .stabilization import StabilizationEngine


@dataclass
class PlateReading:
    detection: Detection
    bucket: BucketId
    stable_text: str
    valid: bool
    new: bool = False

    def to_dict(self) -> dict:
        d = self.detection
        return {
            "box": [d.x1, d.y1, d.x2, d.y2],
            "confidence": round(d.confidence, 3),
            "text": d.text,
            "stable_text": self.stable_text,
            "valid": self.valid,
            "new": self.new,
        }


@dataclass
class FrameResult:
    origin: str
    rows: int = 0
    readings: List[PlateReading] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def valid_count(self) -> int:
        return sum(1 for r in self.readings if r.valid)

    @property
    def new_plates(self) -> List[str]:
        return [r.stable_text for r in self.readings if r.new]


class PipelineRunner:
    def __init__(
        self,
        source,
        detector: Callable[[np.ndarray], Sequence[Sequence[float]]],
        stage: DetectionStage,
        stabilizer: StabilizationEngine,
        validator: Callable[[str], bool],
        orchestrator: EnrichmentOrchestrator,
        batch_enricher=None,
        archive=None,
        status=None,
        history=None,
        event_log=None,
        bucket_factor: int = DEFAULT_BUCKET_FACTOR,
        live_interval: float = 0.2,
        stop_timeout: float = 1.0,
    ):
        self.source = source
        self.detector = detector
        self.stage = stage
        self.stabilizer = stabilizer
        self.validator = validator
        self.orchestrator = orchestrator
        self.batch_enricher = batch_enricher
        self.archive = archive
        self.status = status
        self.history = history
        self.event_log = event_log
        self.bucket_factor = bucket_factor
        self.live_interval = live_interval
        self.stop_timeout = stop_timeout

        self._latest: List[PlateReading] = []
        self._latest_lock = Lock()

        # One-shot capture: no re-entry while one is in flight
        self._capture_busy = Lock()
        self._capture_thread: Optional[Thread] = None

        self._live_stop = Event()
        self._live_thread: Optional[Thread] = None

        self._batch_busy = Lock()
        self._batch_thread: Optional[Thread] = None

        self.last_capture: Optional[FrameResult] = None

    # =========================================================
    # Lifecycle
    # =========================================================

    def start(self):
        self.source.start()
        self._report("info", "Pipeline started")

    def stop(self):
        """Stop workers, then the source. In-flight detector/OCR/lookup calls finish on their own."""
        self.stop_live()
        for thread in (self._capture_thread, self._batch_thread):
            if thread is not None and thread.is_alive():
                thread.join(timeout=self.stop_timeout)
        self.source.stop()
        self._report("info", "Pipeline stopped")

    def reset(self):
        """New session: clear dedup set and cached readings. Source and durable logs untouched."""
        self.orchestrator.reset()
        with self._latest_lock:
            self._latest = []
        self.last_capture = None

    # =========================================================
    # Read path
    # =========================================================

    def latest_frame(self) -> Optional[np.ndarray]:
        return self.source.latest_frame()

    def latest_readings(self) -> List[PlateReading]:
        with self._latest_lock:
            return list(self._latest)

    # =========================================================
    # Core: one frame through detection -> stabilization -> validation -> enrichment
    # =========================================================

    def process_frame(self, frame: np.ndarray, origin: str = "live") -> FrameResult:
        t_start = time.time()
        result = FrameResult(origin=origin)

        try:
            rows = self.detector(frame)
        except Exception as e:
            self._log_error(f"Detector failed ({origin})", e)
            rows = []
        result.rows = len(rows)

        for det in self.stage.process(frame, rows, origin=origin):
            try:
                bucket = det.bucket(self.bucket_factor)
                stable = self.stabilizer.observe_and_vote(bucket, det.text)
                valid = self.validator(stable)
                new = self.orchestrator.submit(stable) if valid else False
            except Exception as e:
                self._log_error(f"Plate handling failed ({origin})", e)
                continue
            result.readings.append(PlateReading(det, bucket, stable, valid, new))

        result.elapsed_ms = (time.time() - t_start) * 1000
        with self._latest_lock:
            self._latest = list(result.readings)
        return result

    # =========================================================
    # One-shot capture
    # =========================================================

    @property
    def capture_busy(self) -> bool:
        return self._capture_busy.locked()

    def capture_and_process(self) -> bool:
        """Snapshot the slot and process it on a worker. False if busy or no frame."""
        if not self._capture_busy.acquire(blocking=False):
            self._report("warning", "Capture already in progress")
            return False

        frame = self.source.latest_frame()
        if frame is None:
            self._capture_busy.release()
            self._report("error", "Error: No frame available to capture.")
            return False

        self._report("info", "Processing...")
        self._capture_thread = Thread(target=self._capture_job, args=(frame,),
                                      name="Capture", daemon=True)
        self._capture_thread.start()
        return True

    def wait_capture(self, timeout: Optional[float] = None):
        thread = self._capture_thread
        if thread is not None:
            thread.join(timeout)

    def _capture_job(self, frame: np.ndarray):
        try:
            result = self.process_frame(frame, origin="capture")
            self.last_capture = result
            message = (f"Processing complete. Detected {len(result.readings)} plates, "
                       f"validated {result.valid_count} ({len(result.new_plates)} new).")
            if self.archive is not None:
                try:
                    _, output_path = self.archive.save(frame, result.readings)
                    message += f" Saved to {output_path}"
                except OSError as e:
                    self._log_error("Capture images not saved", e)
                    self._report("warning", f"Capture images not saved: {e}")
            self._report("info", message)
        except Exception as e:
            self._log_error("Capture failed", e)
            self._report("error", f"Error: {e}")
        finally:
            self._capture_busy.release()

    # =========================================================
    # Live scanning
    # =========================================================

    @property
    def live_running(self) -> bool:
        thread = self._live_thread
        return thread is not None and thread.is_alive() and not self._live_stop.is_set()

    @property
    def live_stopping(self) -> bool:
        """Stopped, but the last worker is still finishing an in-flight frame."""
        thread = self._live_thread
        return thread is not None and thread.is_alive() and self._live_stop.is_set()

    def start_live(self) -> bool:
        if self.live_running:
            return False
        if self.live_stopping:
            self._report("warning", "Previous live scan is still finishing its current frame")
            return False
        # Each worker owns its stop event; a late worker never sees a cleared flag
        stop = Event()
        self._live_stop = stop
        self._live_thread = Thread(target=self._live_loop, args=(stop,), name="Live", daemon=True)
        self._live_thread.start()
        self._report("info", f"Live scanning started ({1.0 / self.live_interval:.0f} Hz)"
                     if self.live_interval > 0 else "Live scanning started")
        return True

    def stop_live(self):
        thread = self._live_thread
        if thread is None:
            return
        self._live_stop.set()
        thread.join(timeout=self.stop_timeout)
        if thread.is_alive():
            self._report("warning", f"Live worker did not stop within {self.stop_timeout}s, "
                                    "it exits after the current frame")
            return
        self._live_thread = None
        self._report("info", "Live scanning stopped")

    def _live_loop(self, stop: Event):
        last_seq = -1
        slot = self.source.slot
        while not stop.is_set():
            frame, seq = slot.snapshot_with_seq()
            if frame is not None and seq != last_seq:
                last_seq = seq
                try:
                    self.process_frame(frame, origin="live")
                except Exception as e:
                    self._log_error("Live iteration failed", e)
            stop.wait(self.live_interval)

    # =========================================================
    # Batch enrichment
    # =========================================================

    @property
    def batch_busy(self) -> bool:
        return self._batch_busy.locked()

    def run_batch(self) -> bool:
        if self.batch_enricher is None:
            self._report("warning", "Batch enrichment is not configured")
            return False
        if not self._batch_busy.acquire(blocking=False):
            self._report("warning", "Enrichment already in progress")
            return False
        self._report("info", "Starting batch enrichment...")
        self._batch_thread = Thread(target=self._batch_job, name="Batch", daemon=True)
        self._batch_thread.start()
        return True

    def wait_batch(self, timeout: Optional[float] = None):
        thread = self._batch_thread
        if thread is not None:
            thread.join(timeout)

    def _batch_job(self):
        try:
            self.batch_enricher.run()
        except Exception as e:
            self._log_error("Batch enrichment failed", e)
            self._report("error", f"Error: {e}")
        finally:
            self._batch_busy.release()

    # =========================================================
    # Status
    # =========================================================

    def snapshot(self) -> dict:
        return {
            "source_state": self.source.state.value,
            "live": self.live_running,
            "capture_busy": self.capture_busy,
            "batch_busy": self.batch_busy,
            "session_plates": self.orchestrator.session.snapshot(),
            "pending_rows": self.orchestrator.pending_count(),
            "readings": [r.to_dict() for r in self.latest_readings()],
            "messages": [m.to_dict() for m in self.history.recent()] if self.history else [],
        }

    def _report(self, level: str, message: str):
        if self.status:
            self.status.publish("Pipeline", message, level)
        else:
            print(f"[Pipeline] {message}")

    def _log_error(self, message: str, exc: BaseException):
        if self.event_log:
            self.event_log.log_error("Pipeline", message, exc)
        else:
            print(f"[Pipeline] {message}: {exc}")
