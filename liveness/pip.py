"""
Picture-in-picture preview of the camera feed.

The preview surface can be closed by the host (the user closing the
window), so PictureInPicture never assumes it alone decides when the
preview ends: surfaces report external exits and the state is reconciled.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

import cv2
import numpy as np

from liveness.errors import PiPError, PiPErrorKind
from liveness.models import FaceObservation, PiPState
from liveness.visual import draw_overlays

logger = logging.getLogger(__name__)


class PipSurface:
    """Capability interface for a floating always-on-top preview."""

    def is_supported(self) -> bool:
        return True

    def open(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def set_exit_listener(self, callback: Callable[[], None]) -> None:
        raise NotImplementedError

    def present(self, frame: np.ndarray, observation: Optional[FaceObservation],
                multiple_faces_flag: bool = False) -> None:
        raise NotImplementedError


class OpenCVPipSurface(PipSurface):
    """
    Topmost OpenCV HighGUI window showing the annotated camera frames.

    HighGUI is not thread-safe, so every window call runs on one UI thread
    owned by the surface; present() only hands over the newest frame.
    """

    def __init__(self, window_name: str = "Liveness Preview", size: tuple[int, int] = (200, 200),
                 refresh_ms: int = 30):
        self.window_name = window_name
        self.size = size
        self.refresh_ms = refresh_ms
        self._open = False
        self._unsupported = False
        self._on_exit: Optional[Callable[[], None]] = None
        self._lock = threading.Lock()
        self._pending: Optional[np.ndarray] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def is_supported(self) -> bool:
        return not self._unsupported

    def set_exit_listener(self, callback: Callable[[], None]) -> None:
        self._on_exit = callback

    def open(self) -> None:
        if self._open:
            return
        ready = threading.Event()
        failure: list = []
        self._stop = threading.Event()
        with self._lock:
            self._pending = None
        self._thread = threading.Thread(target=self._ui_loop, args=(self._stop, ready, failure), daemon=True)
        self._thread.start()
        if not ready.wait(timeout=5.0):
            self._stop.set()
            raise PiPError(PiPErrorKind.UNSUPPORTED, "Preview window did not open")
        if failure:
            # headless OpenCV builds have no HighGUI
            self._unsupported = True
            self._thread = None
            raise PiPError(PiPErrorKind.UNSUPPORTED, f"Preview window not available: {failure[0]}") from failure[0]
        self._open = True

    def close(self) -> None:
        if not self._open:
            return
        self._open = False
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        self._thread = None

    def present(self, frame: np.ndarray, observation: Optional[FaceObservation],
                multiple_faces_flag: bool = False) -> None:
        if not self._open:
            return
        annotated = draw_overlays(frame, observation, multiple_faces_flag)
        with self._lock:
            self._pending = annotated

    def _ui_loop(self, stop: threading.Event, ready: threading.Event, failure: list) -> None:
        try:
            cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
            cv2.resizeWindow(self.window_name, *self.size)
            cv2.setWindowProperty(self.window_name, cv2.WND_PROP_TOPMOST, 1)
        except cv2.error as e:
            failure.append(e)
            ready.set()
            return
        ready.set()

        shown = False
        try:
            while not stop.is_set():
                with self._lock:
                    frame, self._pending = self._pending, None
                if frame is not None:
                    cv2.imshow(self.window_name, frame)
                    shown = True
                cv2.waitKey(self.refresh_ms)
                # visibility is only meaningful once something was drawn
                if shown and cv2.getWindowProperty(self.window_name, cv2.WND_PROP_VISIBLE) < 1:
                    if stop.is_set():
                        return
                    self._open = False
                    logger.info("[pip] preview window closed by user")
                    if self._on_exit is not None:
                        self._on_exit()
                    return
        finally:
            try:
                cv2.destroyWindow(self.window_name)
            except cv2.error:
                logger.debug("[pip] window already gone")


class PictureInPicture:
    """Owns PiPState; toggling is only allowed while the capture session is active."""

    def __init__(self, surface: PipSurface, is_session_active: Callable[[], bool]):
        self.surface = surface
        self._is_session_active = is_session_active
        self._lock = threading.RLock()
        self._active = False
        surface.set_exit_listener(self.notify_external_exit)

    def state(self) -> PiPState:
        with self._lock:
            return PiPState(active=self._active)

    @property
    def active(self) -> bool:
        with self._lock:
            return self._active

    def toggle(self) -> bool:
        """Open or close the preview; returns the new active state. Raises PiPError."""
        with self._lock:
            if not self._is_session_active():
                raise PiPError(PiPErrorKind.INVALID_STATE, "Preview requires an active capture session")
            if not self.surface.is_supported():
                raise PiPError(PiPErrorKind.UNSUPPORTED, "Picture-in-picture is not supported")
            if self._active:
                self.surface.close()
                self._active = False
            else:
                self.surface.open()
                self._active = True
            logger.debug(f"[pip] toggled active={self._active}")
            return self._active

    def notify_external_exit(self) -> None:
        """The host closed the preview; reconcile instead of drifting out of sync."""
        with self._lock:
            if self._active:
                self._active = False
                logger.info("[pip] external exit reconciled")

    def deactivate(self) -> None:
        with self._lock:
            was_active, self._active = self._active, False
        if was_active:
            self.surface.close()

    def present(self, frame: np.ndarray, observation: Optional[FaceObservation],
                multiple_faces_flag: bool = False) -> None:
        if self.active:
            self.surface.present(frame, observation, multiple_faces_flag)
