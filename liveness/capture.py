"""
Camera (and optional microphone) acquisition.

FrameSource is the capability the rest of the package depends on; the
OpenCV implementation opens a webcam index or a video file with
cv2.VideoCapture and, when asked for audio, holds a sounddevice input
stream open for the lifetime of the session.
"""
from __future__ import annotations

import logging
import os
import sys
import threading
import time
from typing import Optional, Union

import cv2
import numpy as np
import sounddevice as sd

from liveness.errors import AcquireError, AcquireErrorKind

logger = logging.getLogger(__name__)


class VideoTrack:
    """Live video track wrapping an opened cv2.VideoCapture."""

    def __init__(self, cap):
        self._cap = cap
        self.live = True

    def read(self) -> tuple[bool, Optional[np.ndarray]]:
        if not self.live:
            return False, None
        return self._cap.read()

    def stop(self) -> None:
        if self.live:
            self.live = False
            self._cap.release()


class AudioTrack:
    """Microphone track; keeping the stream open keeps the input device claimed."""

    def __init__(self, stream):
        self._stream = stream
        self.live = True

    @classmethod
    def open(cls, sample_rate: int) -> "AudioTrack":
        try:
            sd.query_devices(kind="input")
        except (ValueError, sd.PortAudioError) as e:
            raise AcquireError(AcquireErrorKind.UNSUPPORTED, f"No microphone available: {e}") from e
        try:
            stream = sd.InputStream(channels=1, samplerate=sample_rate,
                                    callback=lambda indata, frames, t, status: None)
            stream.start()
        except sd.PortAudioError as e:
            raise AcquireError(AcquireErrorKind.DEVICE_UNAVAILABLE, f"Could not open microphone: {e}") from e
        return cls(stream)

    def stop(self) -> None:
        if self.live:
            self.live = False
            try:
                self._stream.stop()
            finally:
                self._stream.close()


class DeviceHandle:
    """The hardware tracks granted by one acquire() call."""

    def __init__(self, video=None, audio=None):
        self.video = video
        self.audio = audio

    @property
    def tracks(self) -> list:
        return [t for t in (self.video, self.audio) if t is not None]

    @property
    def active(self) -> bool:
        return any(t.live for t in self.tracks)

    @property
    def has_audio(self) -> bool:
        return self.audio is not None

    def stop(self) -> None:
        """Stop every track; safe to call repeatedly."""
        for track in self.tracks:
            try:
                track.stop()
            except Exception:
                logger.exception("[capture] failed to stop track")


class FrameSource:
    """Capability interface for a live frame-producing device."""

    @property
    def is_acquired(self) -> bool:
        raise NotImplementedError

    def acquire(self, want_audio: bool = False) -> DeviceHandle:
        """Grant the camera (and microphone). Raises AcquireError."""
        raise NotImplementedError

    def read_latest(self) -> Optional[np.ndarray]:
        """Most recent full frame, or None while the device is not producing frames yet."""
        raise NotImplementedError

    def release(self) -> None:
        """Stop all hardware tracks. Idempotent, safe before acquire()."""
        raise NotImplementedError


def _camera_backends_available() -> bool:
    registry = getattr(cv2, "videoio_registry", None)
    if registry is None or not hasattr(registry, "getCameraBackends"):
        return True
    return len(registry.getCameraBackends()) > 0


def _check_camera_permission(index: int) -> None:
    """On Linux a camera node that exists but is not accessible means permission denied."""
    if not sys.platform.startswith("linux"):
        return
    node = f"/dev/video{index}"
    if os.path.exists(node) and not os.access(node, os.R_OK | os.W_OK):
        raise AcquireError(AcquireErrorKind.PERMISSION_DENIED, f"Permission denied for {node}")


class OpenCVFrameSource(FrameSource):
    """
    FrameSource over cv2.VideoCapture.

    Args:
        source: camera index or path to a video file.
        sample_rate: microphone sample rate when audio is requested.
        background: keep a reader thread draining the device so read_latest()
            always returns the newest frame. Defaults to True for cameras and
            False for files (files are then read one frame per call).
    """

    def __init__(self, source: Union[int, str] = 0, sample_rate: int = 16000,
                 background: Optional[bool] = None):
        self.source = source
        self.sample_rate = sample_rate
        self.background = isinstance(source, int) if background is None else background
        self._lock = threading.Lock()
        self._handle: Optional[DeviceHandle] = None
        self._latest: Optional[np.ndarray] = None
        self._stop = threading.Event()
        self._reader: Optional[threading.Thread] = None
        self.exhausted = False

    @property
    def is_acquired(self) -> bool:
        with self._lock:
            return self._handle is not None and self._handle.active

    def acquire(self, want_audio: bool = False) -> DeviceHandle:
        with self._lock:
            if self._handle is not None and self._handle.active:
                return self._handle

        is_camera = isinstance(self.source, int)
        if is_camera:
            if not _camera_backends_available():
                raise AcquireError(AcquireErrorKind.UNSUPPORTED, "No camera capture backend available")
            _check_camera_permission(self.source)

        logger.debug(f"[capture] opening source={self.source} want_audio={want_audio}")
        cap = cv2.VideoCapture(self.source)
        if not cap.isOpened():
            cap.release()
            what = "camera index" if is_camera else "video"
            raise AcquireError(AcquireErrorKind.DEVICE_UNAVAILABLE, f"Could not open {what} {self.source}")
        video = VideoTrack(cap)

        audio = None
        if want_audio:
            try:
                audio = AudioTrack.open(self.sample_rate)
            except Exception:
                video.stop()
                raise

        handle = DeviceHandle(video=video, audio=audio)
        with self._lock:
            self._handle = handle
            self._latest = None
            self.exhausted = False
        self._stop.clear()
        if self.background:
            self._reader = threading.Thread(target=self._read_loop, args=(video,), daemon=True)
            self._reader.start()
        logger.info(f"[capture] acquired source={self.source} audio={handle.has_audio}")
        return handle

    def _read_loop(self, video: VideoTrack) -> None:
        while not self._stop.is_set():
            ok, frame = video.read()
            if not ok or frame is None:
                time.sleep(0.05)
                continue
            with self._lock:
                self._latest = frame

    def read_latest(self) -> Optional[np.ndarray]:
        if self.background:
            with self._lock:
                return None if self._latest is None else self._latest.copy()

        with self._lock:
            handle = self._handle
        if handle is None or handle.video is None:
            return None
        ok, frame = handle.video.read()
        if not ok or frame is None:
            self.exhausted = True
            return None
        with self._lock:
            self._latest = frame
        return frame

    def release(self) -> None:
        self._stop.set()
        reader = self._reader
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=2.0)
        self._reader = None
        with self._lock:
            handle, self._handle = self._handle, None
            self._latest = None
        if handle is not None:
            handle.stop()
            logger.info(f"[capture] released source={self.source}")
