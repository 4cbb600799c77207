# detection.py
# Detector output rows -> plate detections (geometry filter + crop + OCR + normalize)

import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from .plate_format import PlateTextNormalizer

BucketId = Tuple[int, int, int, int]

DEFAULT_BUCKET_FACTOR = 20


@dataclass(frozen=True)
class Detection:
    """One detector row that passed the geometry filter. Box is clamped, x1<x2, y1<y2."""
    x1: int
    y1: int
    x2: int
    y2: int
    confidence: float
    raw_text: str = ""
    text: str = ""          # canonical (normalized) text

    @property
    def width(self) -> int:
        return self.x2 - self.x1

    @property
    def height(self) -> int:
        return self.y2 - self.y1

    @property
    def box(self) -> Tuple[int, int, int, int]:
        return self.x1, self.y1, self.x2, self.y2

    def bucket(self, factor: int = DEFAULT_BUCKET_FACTOR) -> BucketId:
        return bucket_id(self.x1, self.y1, self.x2, self.y2, factor)


def bucket_id(x1: int, y1: int, x2: int, y2: int, factor: int = DEFAULT_BUCKET_FACTOR) -> BucketId:
    """Quantized box key: groups the same on-screen region across frames despite jitter.

    Two distinct plates closer than `factor` px can share a bucket.
    """
    return x1 // factor, y1 // factor, x2 // factor, y2 // factor


class DetectionStage:
    """
    One frame + raw detector rows -> zero or more Detection.

    Per row:
    1. confidence < threshold -> skip
    2. center box (model space) -> corner box (frame space)
    3. clamp to frame, empty box -> skip
    4. aspect ratio outside [min, max] -> skip
    5. crop, empty crop -> skip
    6. OCR (any error -> "")
    7. normalize
    """

    def __init__(
        self,
        ocr: Callable[[np.ndarray], str],
        normalizer: Optional[PlateTextNormalizer] = None,
        confidence_threshold: float = 0.5,
        min_aspect_ratio: float = 1.5,
        max_aspect_ratio: float = 5.5,
        input_size: int = 640,
        event_log=None,
    ):
        self.ocr = ocr
        self.normalizer = normalizer or PlateTextNormalizer()
        self.confidence_threshold = confidence_threshold
        self.min_aspect_ratio = min_aspect_ratio
        self.max_aspect_ratio = max_aspect_ratio
        self.input_size = input_size
        self.event_log = event_log

        self.stats = {
            "rows": 0,
            "skipped_conf": 0,
            "skipped_box": 0,
            "skipped_aspect": 0,
            "skipped_crop": 0,
            "ocr_errors": 0,
            "row_errors": 0,
            "detections": 0,
        }
        self._stats_lock = Lock()

    def _count(self, key: str):
        # capture and live workers share one stage
        with self._stats_lock:
            self.stats[key] += 1

    def scale_box(self, row: Sequence[float], frame_w: int, frame_h: int) -> Tuple[int, int, int, int]:
        """(x, y, w, h) center box in model space -> clamped corner box in frame space."""
        x, y, w, h = (float(v) for v in row[:4])
        x_scale = frame_w / float(self.input_size)
        y_scale = frame_h / float(self.input_size)

        x1 = int((x - w / 2) * x_scale)
        y1 = int((y - h / 2) * y_scale)
        x2 = int((x + w / 2) * x_scale)
        y2 = int((y + h / 2) * y_scale)

        x1 = max(0, x1)
        y1 = max(0, y1)
        x2 = min(frame_w - 1, x2)
        y2 = min(frame_h - 1, y2)
        return x1, y1, x2, y2

    def _recognize(self, crop: np.ndarray) -> str:
        try:
            text = self.ocr(crop)
        except Exception as e:
            self._count("ocr_errors")
            if self.event_log:
                self.event_log.log_error("DetectionStage", "OCR failed", e)
            return ""
        return text or ""

    def process_row(self, frame: np.ndarray, row: Sequence[float]) -> Optional[Detection]:
        """One detector row -> Detection or None (rejected)."""
        self._count("rows")
        confidence = float(row[4])
        if confidence < self.confidence_threshold:
            self._count("skipped_conf")
            return None

        frame_h, frame_w = frame.shape[:2]
        x1, y1, x2, y2 = self.scale_box(row, frame_w, frame_h)
        if x2 <= x1 or y2 <= y1:
            self._count("skipped_box")
            return None

        aspect = (x2 - x1) / float(y2 - y1)
        if aspect < self.min_aspect_ratio or aspect > self.max_aspect_ratio:
            self._count("skipped_aspect")
            return None

        crop = frame[y1:y2, x1:x2]
        if crop.size == 0:
            self._count("skipped_crop")
            return None

        raw_text = self._recognize(crop)
        self._count("detections")
        return Detection(
            x1=x1, y1=y1, x2=x2, y2=y2,
            confidence=confidence,
            raw_text=raw_text,
            text=self.normalizer(raw_text),
        )

    def process(self, frame: np.ndarray, rows: Sequence[Sequence[float]], origin: str = "") -> List[Detection]:
        """All rows of one frame. A bad row is excluded, never raised."""
        t_start = time.time()
        detections = []
        for row in rows:
            try:
                det = self.process_row(frame, row)
            except Exception as e:
                self._count("row_errors")
                if self.event_log:
                    self.event_log.log_error("DetectionStage", "Row failed", e, row=list(map(float, row[:5])))
                continue
            if det is not None:
                detections.append(det)

        if self.event_log and detections:
            self.event_log.log_detections(origin, detections, len(rows), (time.time() - t_start) * 1000)
        return detections
