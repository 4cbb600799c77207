# annotate.py
# Drawing plate readings on frames + saving capture input/output images

import os
import datetime
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

GREEN = (0, 255, 0)
RED = (0, 0, 255)
WHITE = (255, 255, 255)


def draw_readings(frame: np.ndarray, readings: Sequence) -> np.ndarray:
    """Boxes + stable text. Valid plates green, rejected OCR thin red. Draws in place."""
    for r in readings:
        det = r.detection
        if r.valid:
            cv2.rectangle(frame, (det.x1, det.y1), (det.x2, det.y2), GREEN, 2)
            cv2.putText(frame, r.stable_text, (det.x1, max(0, det.y1 - 10)),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.9, GREEN, 2)
        else:
            cv2.rectangle(frame, (det.x1, det.y1), (det.x2, det.y2), RED, 1)
            if r.stable_text:
                cv2.putText(frame, r.stable_text, (det.x1, max(0, det.y1 - 10)),
                            cv2.FONT_HERSHEY_SIMPLEX, 0.6, WHITE, 1)
    return frame


def encode_jpeg(frame: np.ndarray, quality: int = 75) -> Optional[bytes]:
    ok, buffer = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not ok:
        return None
    return buffer.tobytes()


class CaptureArchive:
    """
    One-shot captures on disk:
        input_folder/capture_<ts>.png     original frame
        output_folder/processed_<ts>.png  annotated frame
    """

    def __init__(self, input_folder: str, output_folder: str):
        self.input_folder = input_folder
        self.output_folder = output_folder

    def save(self, frame: np.ndarray, readings: Sequence) -> Tuple[str, str]:
        """Returns (input_path, output_path). Raises OSError if a file cannot be written."""
        os.makedirs(self.input_folder, exist_ok=True)
        os.makedirs(self.output_folder, exist_ok=True)

        ts = datetime.datetime.now().strftime("%Y%m%d_%H%M%S%f")[:-3]
        input_path = os.path.join(self.input_folder, f"capture_{ts}.png")
        output_path = os.path.join(self.output_folder, f"processed_{ts}.png")

        if not cv2.imwrite(input_path, frame):
            raise OSError(f"Could not write {input_path}")
        annotated = draw_readings(frame.copy(), readings)
        if not cv2.imwrite(output_path, annotated):
            raise OSError(f"Could not write {output_path}")
        return input_path, output_path
