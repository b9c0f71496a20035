"""
Face detection primitives operating on a single BGR frame.

Two detectors share the same box hygiene (downscale, clamp, size/aspect
filter, overlap suppression):
- HaarFaceDetector: OpenCV frontal-face cascade, fast and dependency-free
- DeepFaceDetector: DeepFace.extract_faces with a configurable backend

DeepFace is imported lazily so tests can inject a fake module.
"""
from __future__ import annotations

import logging
from typing import List, Optional

import cv2
import numpy as np

from liveness.config import Settings
from liveness.errors import DetectionError
from liveness.models import BoundingBox

logger = logging.getLogger(__name__)

MIN_AR, MAX_AR = 0.5, 2.0      # plausible face aspect ratio (w/h)
IOU_DUPLICATE = 0.45           # boxes overlapping more than this are one face


def resize_for_detect(img: np.ndarray, target_w: int) -> tuple[np.ndarray, float]:
    H, W = img.shape[:2]
    if W <= target_w:
        return img, 1.0
    scale = target_w / float(W)
    small = cv2.resize(img, (target_w, int(H * scale)), interpolation=cv2.INTER_AREA)
    return small, scale


def sanitize_box(x: int, y: int, w: int, h: int, W: int, H: int,
                 min_frac: float, max_frac: float) -> Optional[BoundingBox]:
    """Clamp to frame, drop absurd sizes/aspect ratios."""
    if w <= 0 or h <= 0:
        return None
    x = max(0, min(x, W - 1)); y = max(0, min(y, H - 1))
    w = max(1, min(w, W - x)); h = max(1, min(h, H - y))
    area_frac = (w * h) / float(W * H)
    if not (min_frac <= area_frac <= max_frac):
        return None
    if not (MIN_AR <= w / float(h) <= MAX_AR):
        return None
    return BoundingBox(x=x, y=y, w=w, h=h)


def iou(a: BoundingBox, b: BoundingBox) -> float:
    ix0, iy0 = max(a.x, b.x), max(a.y, b.y)
    ix1, iy1 = min(a.x + a.w, b.x + b.w), min(a.y + a.h, b.y + b.h)
    inter = max(0, ix1 - ix0) * max(0, iy1 - iy0)
    if inter <= 0:
        return 0.0
    return inter / float(a.w * a.h + b.w * b.h - inter + 1e-6)


def dedup_boxes(boxes: List[BoundingBox], iou_thresh: float = IOU_DUPLICATE) -> List[BoundingBox]:
    """Keep the largest box of each overlapping cluster, ordered left to right."""
    kept: List[BoundingBox] = []
    for box in sorted(boxes, key=lambda b: b.w * b.h, reverse=True):
        if all(iou(box, k) < iou_thresh for k in kept):
            kept.append(box)
    return sorted(kept, key=lambda b: (b.x, b.y))


class FaceDetector:
    """Capability interface: frame in, face boxes out. Raises DetectionError."""

    def detect(self, frame: np.ndarray) -> List[BoundingBox]:
        raise NotImplementedError


class _BoxFilterMixin:
    detect_width: int
    min_box_fraction: float
    max_box_fraction: float

    def _finish(self, raw: list[tuple[int, int, int, int]], scale: float, W: int, H: int) -> List[BoundingBox]:
        boxes = []
        for (x, y, w, h) in raw:
            box = sanitize_box(int(x / scale), int(y / scale), int(w / scale), int(h / scale),
                               W, H, self.min_box_fraction, self.max_box_fraction)
            if box is not None:
                boxes.append(box)
        return dedup_boxes(boxes)


class HaarFaceDetector(_BoxFilterMixin, FaceDetector):
    def __init__(self, detect_width: int = 480, min_box_fraction: float = 0.01,
                 max_box_fraction: float = 0.60, cascade_path: Optional[str] = None):
        self.detect_width = detect_width
        self.min_box_fraction = min_box_fraction
        self.max_box_fraction = max_box_fraction
        path = cascade_path or (cv2.data.haarcascades + "haarcascade_frontalface_default.xml")
        self._cascade = cv2.CascadeClassifier(path)
        if self._cascade.empty():
            raise RuntimeError(f"Could not load Haar cascade: {path}")

    def detect(self, frame: np.ndarray) -> List[BoundingBox]:
        if frame is None or frame.size == 0:
            raise DetectionError(message="empty frame")
        try:
            H, W = frame.shape[:2]
            small, scale = resize_for_detect(frame, self.detect_width)
            gray = cv2.cvtColor(small, cv2.COLOR_BGR2GRAY) if small.ndim == 3 else small
            found = self._cascade.detectMultiScale(gray, 1.2, 6, minSize=(24, 24))
        except cv2.error as e:
            raise DetectionError(message=f"haar detection failed: {e}") from e
        return self._finish([tuple(f) for f in found], scale, W, H)


class DeepFaceDetector(_BoxFilterMixin, FaceDetector):
    def __init__(self, backend: str = "opencv", detect_width: int = 480,
                 min_box_fraction: float = 0.01, max_box_fraction: float = 0.60):
        self.backend = backend
        self.detect_width = detect_width
        self.min_box_fraction = min_box_fraction
        self.max_box_fraction = max_box_fraction

    def detect(self, frame: np.ndarray) -> List[BoundingBox]:
        if frame is None or frame.size == 0:
            raise DetectionError(message="empty frame")
        # Lazy import so tests can monkeypatch sys.modules['deepface']
        from deepface import DeepFace

        H, W = frame.shape[:2]
        small, scale = resize_for_detect(frame, self.detect_width)
        try:
            dets = DeepFace.extract_faces(
                img_path=small,
                detector_backend=self.backend,
                enforce_detection=False,
                align=False,
            )
        except Exception as e:
            raise DetectionError(message=f"deepface detection failed: {e}") from e

        raw = []
        for d in dets or []:
            # enforce_detection=False yields a whole-image pseudo face with confidence 0
            if float((d or {}).get("confidence") or 0.0) <= 0.0:
                continue
            fa = d.get("facial_area") or {}
            raw.append((int(fa.get("x", 0)), int(fa.get("y", 0)), int(fa.get("w", 0)), int(fa.get("h", 0))))
        return self._finish(raw, scale, W, H)


def build_face_detector(settings: Settings) -> FaceDetector:
    kwargs = dict(
        detect_width=settings.DETECT_WIDTH,
        min_box_fraction=settings.MIN_BOX_FRACTION,
        max_box_fraction=settings.MAX_BOX_FRACTION,
    )
    if settings.FACE_DETECTOR == "deepface":
        return DeepFaceDetector(backend=settings.DEEPFACE_BACKEND, **kwargs)
    return HaarFaceDetector(**kwargs)
