# file_logger.py
# Detail event trail to JSONL files.
#
# Responsibilities (debug & audit trail):
#   - Stream state changes, caught exceptions with traceback: logs/events.jsonl
#   - Detections per processed frame:                         logs/detections.jsonl
#   - Plate submissions and lookup outcomes:                  logs/plates.jsonl
#
# NOT responsible for:
#   - Short user-facing messages -> StatusChannel (status.py)
#   - Vehicle records            -> log stores (log_store.py)

import os
import json
import time
import traceback
from typing import List, Optional
from threading import Lock


class JSONLWriter:
    """Thread-safe JSONL file writer."""

    def __init__(self, path: str):
        self.path = path
        self.lock = Lock()
        self._ensure_dir()

    def _ensure_dir(self):
        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)

    def write(self, data: dict):
        with self.lock:
            try:
                with open(self.path, 'a', encoding='utf-8') as f:
                    f.write(json.dumps(data, ensure_ascii=False, default=str) + '\n')
            except OSError as e:
                # Event trail is best effort, never fatal
                print(f"[EventLog] Write failed {self.path}: {e}")


class EventLog:
    """
    Detail event trail.

    Files:
    - events.jsonl:     state changes, warnings, errors (with traceback)
    - detections.jsonl: detections per processed frame
    - plates.jsonl:     plate submissions, dedup hits, lookup outcomes
    """

    def __init__(self, output_dir: str):
        logs_dir = os.path.join(output_dir, "logs")

        self.events = JSONLWriter(os.path.join(logs_dir, "events.jsonl"))
        self.detections = JSONLWriter(os.path.join(logs_dir, "detections.jsonl"))
        self.plates = JSONLWriter(os.path.join(logs_dir, "plates.jsonl"))

    def log_event(self, component: str, event: str, **data):
        self.events.write({
            "ts": time.time(),
            "component": component,
            "event": event,
            **data,
        })

    def log_error(self, component: str, message: str, exc: Optional[BaseException] = None, **data):
        """Caught exception with full traceback."""
        record = {
            "ts": time.time(),
            "component": component,
            "event": "error",
            "message": message,
            **data,
        }
        if exc is not None:
            record["error"] = repr(exc)
            record["traceback"] = "".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            )
        self.events.write(record)

    def log_detections(self, origin: str, detections: List, rows: int, elapsed_ms: float):
        """Detections for one processed frame."""
        self.detections.write({
            "ts": time.time(),
            "origin": origin,
            "rows": rows,
            "count": len(detections),
            "ms": round(elapsed_ms, 1),
            "objects": [
                {
                    "box": [d.x1, d.y1, d.x2, d.y2],
                    "conf": round(d.confidence, 3),
                    "raw": d.raw_text,
                    "text": d.text,
                }
                for d in detections
            ],
        })

    def log_plate(self, plate: str, status: str, **data):
        """status: new | duplicate | invalid | found | not_found | pending"""
        self.plates.write({
            "ts": time.time(),
            "plate": plate,
            "status": status,
            **data,
        })
