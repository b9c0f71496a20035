"""
Periodic face-count sampling over a FrameSource.

Each tick pulls the newest frame, runs the detector and publishes a
FaceObservation. A frame source that is not producing frames yet skips the
tick; a detector failure counts as zero faces for that tick only.

MULTIPLE_FACES handling:
- multiple_faces_flag latches on the first tick with more than one face and
  clears on the next tick with at most one (unless alerts are suppressed)
- a warning is emitted on each 1->many transition, at most once per debounce
  window, so a 5 Hz sampler does not spam the caller
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

import numpy as np

from liveness.capture import FrameSource
from liveness.detection import FaceDetector
from liveness.models import FaceMonitorState, FaceObservation, MultipleFacesWarning
from liveness.timers import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

DEFAULT_RATE_HZ = 5.0
DEFAULT_DEBOUNCE_SECONDS = 3.0

ObservationCallback = Callable[[FaceObservation], None]
WarningCallback = Callable[[MultipleFacesWarning], None]
FrameCallback = Callable[[np.ndarray, FaceObservation], None]


class FaceMonitor:
    def __init__(self, detector: FaceDetector, scheduler: Scheduler,
                 debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS):
        self.detector = detector
        self.scheduler = scheduler
        self.debounce_seconds = float(debounce_seconds)

        self._state_lock = threading.Lock()
        self._state = FaceMonitorState()
        self._prev_count = 0
        self._last_warning_at: Optional[float] = None

        # held for the duration of a tick; stop() waits on it
        self._tick_lock = threading.Lock()
        self._tick_thread: Optional[int] = None

        self._running = False
        self._generation = 0
        self._handle: Optional[TimerHandle] = None
        self._source: Optional[FrameSource] = None
        self._period = 1.0 / DEFAULT_RATE_HZ
        self._on_observation: Optional[ObservationCallback] = None
        self._on_warning: Optional[WarningCallback] = None
        self._on_frame: Optional[FrameCallback] = None

    # ---- lifecycle ----
    @property
    def running(self) -> bool:
        return self._running

    def attach(self, frame_source: FrameSource, rate_hz: float = DEFAULT_RATE_HZ,
               on_observation: Optional[ObservationCallback] = None,
               on_warning: Optional[WarningCallback] = None,
               on_frame: Optional[FrameCallback] = None) -> None:
        """Start sampling frame_source every 1/rate_hz seconds until stop()."""
        if rate_hz is None or rate_hz <= 0:
            raise ValueError(f"rate_hz must be positive, got {rate_hz}")
        if self._running:
            raise RuntimeError("FaceMonitor is already attached; call stop() first")

        self.reset()
        self._source = frame_source
        self._period = 1.0 / float(rate_hz)
        self._on_observation = on_observation
        self._on_warning = on_warning
        self._on_frame = on_frame
        self._generation += 1
        self._running = True
        logger.debug(f"[monitor] attached rate_hz={rate_hz} debounce={self.debounce_seconds}s")
        self._schedule_next(self._generation)

    def stop(self) -> None:
        """Cancel sampling. No tick runs after this returns."""
        self._running = False
        self._generation += 1
        self._cancel_pending()
        if self._tick_thread != threading.get_ident():
            # wait out a tick already running on another thread
            with self._tick_lock:
                pass
        self._cancel_pending()
        self._source = None

    def _cancel_pending(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.cancel()

    def _schedule_next(self, generation: int) -> None:
        self._handle = self.scheduler.call_later(self._period, lambda: self._tick(generation))

    # ---- sampling ----
    def _tick(self, generation: int) -> None:
        with self._tick_lock:
            self._tick_thread = threading.get_ident()
            try:
                if not self._running or generation != self._generation:
                    return
                frame = self._source.read_latest() if self._source is not None else None
                if frame is None:
                    logger.debug("[monitor] frame source not ready; skipping tick")
                else:
                    self._observe(frame)
                if self._running and generation == self._generation:
                    self._schedule_next(generation)
            finally:
                self._tick_thread = None

    def _observe(self, frame: np.ndarray) -> FaceObservation:
        try:
            boxes = self.detector.detect(frame)
        except Exception:
            logger.exception("[monitor] detection failed; counting 0 faces for this tick")
            boxes = []

        now = self.scheduler.now()
        obs = FaceObservation(timestamp=now, face_count=len(boxes), bounding_boxes=boxes)
        warning = None
        with self._state_lock:
            st = self._state
            st.last_observation = obs
            if obs.face_count > 1:
                st.multiple_faces_flag = True
                rising = self._prev_count <= 1
                quiet = (self._last_warning_at is None
                         or now - self._last_warning_at >= self.debounce_seconds)
                if rising and quiet and not st.alerts_suppressed:
                    self._last_warning_at = now
                    warning = MultipleFacesWarning(timestamp=now, face_count=obs.face_count)
            elif not st.alerts_suppressed:
                st.multiple_faces_flag = False
            self._prev_count = obs.face_count

        if obs.face_count != 1:
            logger.debug(f"[monitor] t={now:.2f} faces={obs.face_count}")
        if self._on_observation is not None:
            self._on_observation(obs)
        if warning is not None:
            logger.warning(f"[monitor] multiple faces detected count={obs.face_count}")
            if self._on_warning is not None:
                self._on_warning(warning)
        if self._on_frame is not None:
            self._on_frame(frame, obs)
        return obs

    # ---- state ----
    def state(self) -> FaceMonitorState:
        with self._state_lock:
            return self._state.model_copy(deep=True)

    def reset(self) -> None:
        with self._state_lock:
            suppressed = self._state.alerts_suppressed
            self._state = FaceMonitorState(alerts_suppressed=suppressed)
            self._prev_count = 0
            self._last_warning_at = None

    def set_alert_suppression(self, suppressed: bool) -> None:
        """While suppressed the flag stays latched and no warnings are emitted."""
        with self._state_lock:
            self._state.alerts_suppressed = bool(suppressed)

    def clear_multiple_faces_flag(self) -> None:
        with self._state_lock:
            self._state.multiple_faces_flag = False
