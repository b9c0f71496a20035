
"""Visualization helpers for the preview surface.

- face_status / status_label: the three presented states (no face, verified, multiple)
- draw_overlays: draw face boxes (green for one face, red for several) and a status banner
"""
from __future__ import annotations
import cv2
import numpy as np
from typing import Optional, Tuple

from liveness.models import FaceObservation, FaceStatus

GREEN: Tuple[int, int, int] = (0, 200, 0)
RED: Tuple[int, int, int] = (0, 0, 255)
GREY: Tuple[int, int, int] = (160, 160, 160)


def face_status(face_count: int) -> FaceStatus:
    if face_count <= 0:
        return "no_face"
    if face_count == 1:
        return "verified"
    return "multiple_faces"


def status_label(face_count: int, multiple_faces_flag: bool = False) -> str:
    """Human readable badge text, as shown next to the camera preview."""
    if multiple_faces_flag and face_count <= 1:
        return "Multiple Faces"
    if face_count == 1:
        return "Face Verified"
    if face_count > 1:
        return f"{face_count} Faces"
    return "No Face"


def draw_overlays(frame: np.ndarray,
                  observation: Optional[FaceObservation] = None,
                  multiple_faces_flag: bool = False) -> np.ndarray:
    """Draw bounding boxes and the status banner on a copy of a BGR frame.

    Args:
        frame: BGR image
        observation: latest face observation; None draws only the "No Face" banner
        multiple_faces_flag: latched multi-face flag from the monitor state

    Returns:
        Annotated copy of the frame
    """
    out = frame.copy()
    h, w = out.shape[:2]

    count = observation.face_count if observation is not None else 0
    alarm = count > 1 or multiple_faces_flag
    color = RED if alarm else (GREEN if count == 1 else GREY)

    boxes = observation.bounding_boxes if observation is not None else []
    for box in boxes:
        # clamp to image bounds
        x = max(0, min(box.x, w - 1)); y = max(0, min(box.y, h - 1))
        bw = max(0, min(box.w, w - x)); bh = max(0, min(box.h, h - y))
        cv2.rectangle(out, (x, y), (x + bw, y + bh), color, 2)

    label = status_label(count, multiple_faces_flag)
    cv2.putText(out, label, (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.8, color, 2, cv2.LINE_AA)
    return out
