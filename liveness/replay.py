"""
Offline replay of a recorded video through the face monitor.

Uses a ManualScheduler so a clip is processed as fast as detection allows
while ticks still land at the video timestamps they would have had live.
"""
from __future__ import annotations

import logging
import os
from typing import Dict, List, Optional

import cv2
import numpy as np

from liveness.capture import OpenCVFrameSource
from liveness.config import Settings
from liveness.detection import FaceDetector, build_face_detector
from liveness.models import FaceObservation, MultipleFacesWarning
from liveness.monitor import FaceMonitor
from liveness.timers import ManualScheduler

logger = logging.getLogger(__name__)


class ReplaySource(OpenCVFrameSource):
    """Video file source whose "latest" frame follows the virtual clock."""

    def __init__(self, path: str, clock: ManualScheduler, fps: float):
        super().__init__(path, background=False)
        self.clock = clock
        self.fps = fps
        self._pos = 0
        self._current: Optional[np.ndarray] = None

    def read_latest(self) -> Optional[np.ndarray]:
        target = int(self.clock.now() * self.fps)
        while self._pos <= target:
            frame = super().read_latest()
            if frame is None:
                return None
            self._current = frame
            self._pos += 1
        return self._current


def _probe_fps(path: str) -> float:
    cap = cv2.VideoCapture(path)
    try:
        return cap.get(cv2.CAP_PROP_FPS) or 25.0
    finally:
        cap.release()


def replay_video(video_path: str, settings: Settings, rate_hz: Optional[float] = None,
                 detector: Optional[FaceDetector] = None) -> Dict:
    """
    Sample a video file like a live session and collect what the caller would see.

    Returns:
        dict with "observations", "warnings" and a "summary" block.
    """
    if not os.path.exists(video_path):
        raise FileNotFoundError(f"Video not found: {video_path}")

    rate = float(rate_hz or settings.FACE_SAMPLE_RATE_HZ)
    clock = ManualScheduler()
    source = ReplaySource(video_path, clock, _probe_fps(video_path))
    monitor = FaceMonitor(detector or build_face_detector(settings), clock,
                          debounce_seconds=settings.MULTI_FACE_DEBOUNCE_SECONDS)

    observations: List[FaceObservation] = []
    warnings: List[MultipleFacesWarning] = []
    logger.debug(f"[replay] start video={video_path} fps={source.fps} rate_hz={rate}")

    source.acquire()
    try:
        monitor.attach(source, rate, on_observation=observations.append, on_warning=warnings.append)
        while not source.exhausted:
            clock.advance(1.0 / rate)
    finally:
        monitor.stop()
        source.release()

    counts = [o.face_count for o in observations]
    logger.debug(f"[replay] finished ticks={len(observations)} warnings={len(warnings)}")
    return {
        "video": video_path,
        "rate_hz": rate,
        "observations": [o.model_dump() for o in observations],
        "warnings": [w.model_dump() for w in warnings],
        "summary": {
            "ticks": len(observations),
            "max_faces": max(counts) if counts else 0,
            "no_face_ticks": sum(1 for c in counts if c == 0),
            "multiple_face_ticks": sum(1 for c in counts if c > 1),
            "warnings": len(warnings),
        },
    }
