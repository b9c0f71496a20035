import sys, types

import numpy as np
import pytest

from liveness.config import Settings
from liveness.detection import (
    DeepFaceDetector,
    HaarFaceDetector,
    build_face_detector,
    dedup_boxes,
    iou,
    resize_for_detect,
    sanitize_box,
)
from liveness.errors import DetectionError
from liveness.models import BoundingBox


class DummyDeepFace:
    faces = []

    @staticmethod
    def extract_faces(img_path, detector_backend, enforce_detection, align):
        return DummyDeepFace.faces


class BrokenDeepFace:
    @staticmethod
    def extract_faces(**kwargs):
        raise ValueError("model weights missing")


@pytest.fixture
def fake_deepface(monkeypatch):
    monkeypatch.setitem(sys.modules, "deepface", types.SimpleNamespace(DeepFace=DummyDeepFace))
    return DummyDeepFace


def test_sanitize_box_filters_implausible_boxes():
    assert sanitize_box(10, 10, 20, 20, 100, 100, 0.01, 0.6) == BoundingBox(x=10, y=10, w=20, h=20)
    assert sanitize_box(10, 10, 0, 20, 100, 100, 0.01, 0.6) is None
    # too small / too large
    assert sanitize_box(10, 10, 5, 5, 100, 100, 0.01, 0.6) is None
    assert sanitize_box(0, 0, 90, 90, 100, 100, 0.01, 0.6) is None
    # far too wide to be a face
    assert sanitize_box(0, 10, 60, 10, 100, 100, 0.01, 0.6) is None
    # clamped to the frame
    assert sanitize_box(90, 90, 30, 30, 100, 100, 0.0, 1.0) == BoundingBox(x=90, y=90, w=10, h=10)


def test_dedup_keeps_largest_and_orders_left_to_right():
    a = BoundingBox(x=50, y=10, w=20, h=20)
    b = BoundingBox(x=52, y=11, w=18, h=18)
    c = BoundingBox(x=5, y=10, w=20, h=20)
    assert iou(a, b) > 0.45
    assert iou(a, c) == 0.0
    assert dedup_boxes([b, a, c]) == [c, a]


def test_resize_for_detect():
    img = np.zeros((100, 960, 3), dtype=np.uint8)
    small, scale = resize_for_detect(img, 480)
    assert small.shape[1] == 480 and scale == 0.5
    same, scale = resize_for_detect(np.zeros((10, 20, 3), dtype=np.uint8), 480)
    assert same.shape == (10, 20, 3) and scale == 1.0


def test_deepface_detector_counts_confident_faces(fake_deepface):
    fake_deepface.faces = [
        {"facial_area": {"x": 0, "y": 0, "w": 100, "h": 100}, "confidence": 0},
        {"facial_area": {"x": 60, "y": 10, "w": 20, "h": 22}, "confidence": 0.93},
        {"facial_area": {"x": 10, "y": 10, "w": 20, "h": 20}, "confidence": 0.98},
    ]
    boxes = DeepFaceDetector().detect(np.zeros((100, 100, 3), dtype=np.uint8))
    assert [b.x for b in boxes] == [10, 60]


def test_deepface_detector_rescales_to_full_frame(fake_deepface):
    fake_deepface.faces = [{"facial_area": {"x": 10, "y": 10, "w": 40, "h": 40}, "confidence": 0.9}]
    boxes = DeepFaceDetector(detect_width=480).detect(np.zeros((400, 960, 3), dtype=np.uint8))
    assert boxes == [BoundingBox(x=20, y=20, w=80, h=80)]


def test_deepface_failure_is_detection_error(monkeypatch):
    monkeypatch.setitem(sys.modules, "deepface", types.SimpleNamespace(DeepFace=BrokenDeepFace))
    with pytest.raises(DetectionError):
        DeepFaceDetector().detect(np.zeros((50, 50, 3), dtype=np.uint8))


def test_haar_detector_on_blank_frame():
    detector = HaarFaceDetector()
    assert detector.detect(np.zeros((120, 160, 3), dtype=np.uint8)) == []
    with pytest.raises(DetectionError):
        detector.detect(np.zeros((0, 0, 3), dtype=np.uint8))


def test_build_face_detector():
    assert isinstance(build_face_detector(Settings(FACE_DETECTOR="deepface")), DeepFaceDetector)
    assert isinstance(build_face_detector(Settings(FACE_DETECTOR="haar")), HaarFaceDetector)
