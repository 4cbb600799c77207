# detector.py
# Plate detector: ultralytics YOLO -> rows [x, y, w, h, conf] in model input space

import os
from threading import Lock
from typing import List

import numpy as np

from .errors import ModelLoadError


class PlateDetector:
    """
    Wraps a single-class plate YOLO model (.pt / .onnx / .engine).

    Rows are center boxes in an input_size x input_size space, the shape
    DetectionStage scales back to the frame. The model is not re-entrant,
    calls are serialized with a lock (capture and live paths share it).
    """

    def __init__(self, model_path: str, input_size: int = 640, device: str = "cpu",
                 min_conf: float = 0.25):
        from ultralytics import YOLO

        if not os.path.isfile(model_path):
            raise ModelLoadError(f"Plate detector model not found: {model_path}")
        try:
            self.model = YOLO(model_path, task="detect")
        except Exception as e:
            raise ModelLoadError(f"Could not load plate detector {model_path}: {e}") from e

        self.device = device
        if not model_path.endswith((".onnx", ".engine")):
            try:
                self.model.to(device)
            except Exception:
                self.device = "cpu"

        self.input_size = input_size
        self.min_conf = min_conf
        self._lock = Lock()
        print(f"[Detector] Loaded {os.path.basename(model_path)} (imgsz={input_size}, device={self.device})")

    def detect(self, frame: np.ndarray) -> List[List[float]]:
        with self._lock:
            results = self.model.predict(
                frame,
                imgsz=self.input_size,
                conf=self.min_conf,
                device=self.device,
                verbose=False,
            )

        rows = []
        for result in results:
            boxes = result.boxes
            if boxes is None or len(boxes) == 0:
                continue
            xywhn = boxes.xywhn.cpu().numpy()
            confs = boxes.conf.cpu().numpy()
            for (x, y, w, h), conf in zip(xywhn, confs):
                s = float(self.input_size)
                rows.append([x * s, y * s, w * s, h * s, float(conf)])
        return rows

    __call__ = detect
