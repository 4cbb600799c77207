# ocr.py
# Tesseract OCR on a plate crop (gray -> Otsu -> 2x cubic upscale)

import cv2
import numpy as np
import pytesseract

from .errors import ConfigError

PLATE_WHITELIST = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


def preprocess_plate(crop: np.ndarray, upscale: float = 2.0) -> np.ndarray:
    gray = cv2.cvtColor(crop, cv2.COLOR_BGR2GRAY) if crop.ndim == 3 else crop
    _, thresh = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY | cv2.THRESH_OTSU)
    if upscale and upscale != 1.0:
        thresh = cv2.resize(thresh, None, fx=upscale, fy=upscale, interpolation=cv2.INTER_CUBIC)
    return thresh


class TesseractOCR:
    """crop -> raw text. Errors propagate; DetectionStage turns them into ""."""

    def __init__(self, tesseract_cmd: str = "", psm: int = 7, upscale: float = 2.0,
                 check: bool = True):
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.psm = psm
        self.upscale = upscale
        self.tess_config = f"--psm {psm} -c tessedit_char_whitelist={PLATE_WHITELIST}"

        if check:
            try:
                version = pytesseract.get_tesseract_version()
            except (pytesseract.TesseractNotFoundError, OSError) as e:
                raise ConfigError(f"Tesseract not available: {e}") from e
            print(f"[OCR] Tesseract {version} (psm={psm})")

    def recognize(self, crop: np.ndarray) -> str:
        image = preprocess_plate(crop, self.upscale)
        return pytesseract.image_to_string(image, config=self.tess_config).strip()

    __call__ = recognize
