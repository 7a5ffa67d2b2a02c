"""Optional OpenCV clean-up applied to an image before recognition.

Certificates are often photographed or scanned with decorative borders,
coloured backgrounds and seals; the pass below flattens the background,
boosts local contrast, straightens small rotations and upscales low-res
captures. Enabled with `EngineConfig.preprocess` / CERTSCAN_PREPROC=1.
"""
from typing import Dict, Tuple

import cv2
import numpy as np

from .contracts import DecodeError

# Tesseract does best with x-heights of ~20px; small phone crops get doubled.
MIN_HEIGHT_PX = 1000
MAX_SKEW_DEG = 5.0


def _flatten_background(gray: np.ndarray) -> np.ndarray:
    # Divide out a heavily blurred copy: removes gradients, tints and faint watermarks.
    k = max(15, (min(gray.shape[:2]) // 20) | 1)
    bg = cv2.medianBlur(gray, k) if k <= 255 else cv2.GaussianBlur(gray, (0, 0), k / 3)
    return cv2.divide(gray, bg, scale=255)


def _skew_angle(gray: np.ndarray) -> float:
    _, ink = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY_INV + cv2.THRESH_OTSU)
    coords = cv2.findNonZero(ink)
    if coords is None or len(coords) < 50:
        return 0.0
    angle = cv2.minAreaRect(coords)[-1]
    # minAreaRect reports in [0, 90) on OpenCV >= 4.5 and [-90, 0) before
    if angle > 45:
        angle -= 90
    elif angle < -45:
        angle += 90
    return float(angle) if abs(angle) <= MAX_SKEW_DEG else 0.0


def _rotate(gray: np.ndarray, angle: float) -> np.ndarray:
    h, w = gray.shape[:2]
    mat = cv2.getRotationMatrix2D((w / 2, h / 2), angle, 1.0)
    return cv2.warpAffine(gray, mat, (w, h), flags=cv2.INTER_CUBIC, borderMode=cv2.BORDER_REPLICATE)


def enhance(content: bytes, enable_deskew: bool = True) -> Tuple[bytes, Dict[str, float]]:
    """Decode, clean and re-encode an image as grayscale PNG.

    Returns the PNG bytes and a few numbers describing what was done
    (skew_deg, upscale, w, h, sharpness). Raises DecodeError for bytes
    OpenCV cannot read.
    """
    img = cv2.imdecode(np.frombuffer(content, np.uint8), cv2.IMREAD_GRAYSCALE)
    if img is None or img.size == 0:
        raise DecodeError("Unable to decode image bytes")

    upscale = 1.0
    if img.shape[0] < MIN_HEIGHT_PX:
        upscale = 2.0
        img = cv2.resize(img, None, fx=upscale, fy=upscale, interpolation=cv2.INTER_CUBIC)

    gray = _flatten_background(img)
    gray = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8)).apply(gray)
    angle = _skew_angle(gray) if enable_deskew else 0.0
    if angle:
        gray = _rotate(gray, angle)

    ok, enc = cv2.imencode(".png", gray)
    if not ok:
        raise DecodeError("PNG encode failed")
    h, w = gray.shape[:2]
    return enc.tobytes(), {
        "skew_deg": angle,
        "upscale": upscale,
        "w": float(w),
        "h": float(h),
        "sharpness": float(cv2.Laplacian(gray, cv2.CV_64F).var()),
    }
