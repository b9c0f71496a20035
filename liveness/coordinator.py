"""
Session coordinator: the API the application wizard talks to.

Starts and stops the camera + face monitor together, forwards dictation
commands to the speech session, multiplexes every event onto one EventBus
and guarantees that stop() leaves no device held and no timer pending,
whatever the session was doing when it was called.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

import cv2
import numpy as np

from liveness.capture import FrameSource
from liveness.config import Settings
from liveness.errors import (
    AcquireError,
    AcquireErrorKind,
    CoordinatorError,
    CoordinatorErrorKind,
    PiPError,
    PiPErrorKind,
)
from liveness.events import EventBus, Subscriber
from liveness.models import (
    CaptureSession,
    FaceMonitorState,
    FaceObservation,
    FatalError,
    PiPState,
    SessionSnapshot,
    SessionState,
    SpeechSessionState,
)
from liveness.monitor import FaceMonitor
from liveness.pip import PictureInPicture, PipSurface
from liveness.speech import SpeechSession
from liveness.timers import Scheduler, ThreadScheduler

logger = logging.getLogger(__name__)

_BUSY = (SessionState.STARTING, SessionState.ACTIVE, SessionState.STOPPING)


class SessionCoordinator:
    def __init__(self, frame_source: FrameSource, face_monitor: FaceMonitor,
                 speech: SpeechSession, pip_surface: Optional[PipSurface] = None,
                 bus: Optional[EventBus] = None, default_rate_hz: float = 5.0):
        self.frame_source = frame_source
        self.face_monitor = face_monitor
        self.speech = speech
        self.bus = bus or EventBus()
        self.speech.on_event = self.bus.publish
        self.pip = PictureInPicture(pip_surface, self.is_active) if pip_surface is not None else None
        self.default_rate_hz = default_rate_hz

        self._lock = threading.Lock()
        self._session: Optional[CaptureSession] = None
        self._generation = 0

    # ---- events ----
    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        return self.bus.subscribe(callback)

    # ---- capture session ----
    def is_active(self) -> bool:
        with self._lock:
            return self._session is not None and self._session.state == SessionState.ACTIVE

    def request_start(self, want_audio: bool = False, want_face_monitoring: bool = True,
                      rate_hz: Optional[float] = None) -> CaptureSession:
        """
        Acquire the camera (and microphone) and start face monitoring.

        Raises:
            CoordinatorError: ALREADY_ACTIVE if a session is starting/active,
                CANCELLED if stop() ran while the camera was being acquired.
            AcquireError: the device could not be acquired; the session is FAILED
                and the caller may continue without monitoring. Any other device
                failure is handled the same way and re-raised unchanged.
        """
        rate = float(rate_hz if rate_hz is not None else self.default_rate_hz)
        if rate <= 0:
            raise ValueError(f"rate_hz must be positive, got {rate}")

        with self._lock:
            if self._session is not None and self._session.state in _BUSY:
                raise CoordinatorError(CoordinatorErrorKind.ALREADY_ACTIVE, "A capture session is already running")
            self._generation += 1
            generation = self._generation
            self._session = CaptureSession(state=SessionState.STARTING, has_audio=want_audio, frame_rate_hz=rate)
        logger.info(f"[session] starting want_audio={want_audio} face_monitoring={want_face_monitoring} rate_hz={rate}")

        # no lock held while waiting on the device
        try:
            handle = self.frame_source.acquire(want_audio)
        except Exception as e:
            if isinstance(e, AcquireError):
                kind, message = e.kind.value, e.message
            else:
                # a crashing driver is as fatal as a missing one
                kind, message = AcquireErrorKind.DEVICE_UNAVAILABLE.value, f"Camera failed to start: {e}"
            with self._lock:
                current = generation == self._generation
                if current:
                    self._session = CaptureSession(state=SessionState.FAILED, has_audio=want_audio,
                                                   frame_rate_hz=rate, failure_reason=kind)
            if not current:
                raise CoordinatorError(CoordinatorErrorKind.CANCELLED, "Session was stopped during start") from e
            self.frame_source.release()
            logger.warning(f"[session] camera unavailable ({kind}); continuing without monitoring")
            self.bus.publish(FatalError(source="capture", kind=kind, message=message))
            raise

        with self._lock:
            current = generation == self._generation
            if current:
                self._session.state = SessionState.ACTIVE
                self._session.has_audio = handle.has_audio
                if want_face_monitoring:
                    self.face_monitor.attach(self.frame_source, rate,
                                             on_observation=self.bus.publish,
                                             on_warning=self.bus.publish,
                                             on_frame=self._present)
                snapshot = self._session.model_copy()
            idle = self._session is None or self._session.state not in (SessionState.STARTING, SessionState.ACTIVE)

        if not current:
            # stop() won the race: abandon what the acquire produced
            handle.stop()
            if idle:
                self.frame_source.release()
            logger.info("[session] start abandoned; stop() ran during acquire")
            raise CoordinatorError(CoordinatorErrorKind.CANCELLED, "Session was stopped during start")

        logger.info("[session] active")
        return snapshot

    def stop(self) -> bool:
        """Tear everything down. Safe at any point; returns True if a session was running."""
        # sampling ends while the session is still ACTIVE, never after
        self.face_monitor.stop()
        with self._lock:
            self._generation += 1
            session = self._session
            was_running = session is not None and session.state in (SessionState.STARTING, SessionState.ACTIVE)
            if session is not None:
                session.state = SessionState.STOPPING

        steps = (
            ("face monitor", self._stop_monitor),
            ("preview", self._stop_pip),
            ("dictation", self.speech.stop),
            ("camera", self.frame_source.release),
        )
        for name, step in steps:
            try:
                step()
            except Exception:
                logger.exception(f"[session] failed to stop {name}")

        with self._lock:
            if self._session is session:
                self._session = None
        if was_running:
            logger.info("[session] stopped")
        return was_running

    def _stop_monitor(self) -> None:
        self.face_monitor.stop()
        self.face_monitor.reset()

    def _stop_pip(self) -> None:
        if self.pip is not None:
            self.pip.deactivate()

    def _present(self, frame: np.ndarray, observation: FaceObservation) -> None:
        if self.pip is not None and self.pip.active:
            self.pip.present(frame, observation, self.face_monitor.state().multiple_faces_flag)

    # ---- preview / photo ----
    def toggle_pip(self) -> bool:
        if self.pip is None:
            raise PiPError(PiPErrorKind.UNSUPPORTED, "No preview surface configured")
        return self.pip.toggle()

    def capture_photo(self) -> Optional[bytes]:
        """PNG of the latest frame; None if the camera has not produced a frame yet."""
        if not self.is_active():
            raise CoordinatorError(CoordinatorErrorKind.NOT_ACTIVE, "No active capture session")
        frame = self.frame_source.read_latest()
        if frame is None:
            return None
        ok, buf = cv2.imencode(".png", frame)
        if not ok:
            logger.error("[session] PNG encoding failed")
            return None
        return buf.tobytes()

    # ---- dictation ----
    def start_dictation(self) -> None:
        self.speech.start()

    def stop_dictation(self) -> None:
        self.speech.stop()

    def reset_transcript(self) -> None:
        self.speech.reset_transcript()

    # ---- snapshots ----
    def session(self) -> CaptureSession:
        with self._lock:
            return self._session.model_copy() if self._session is not None else CaptureSession()

    def face_state(self) -> FaceMonitorState:
        return self.face_monitor.state()

    def speech_state(self) -> SpeechSessionState:
        return self.speech.state()

    def pip_state(self) -> PiPState:
        return self.pip.state() if self.pip is not None else PiPState()

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session=self.session(),
            face=self.face_state(),
            speech=self.speech_state(),
            pip=self.pip_state(),
        )


def build_coordinator(settings: Settings, scheduler: Optional[Scheduler] = None,
                      with_preview: bool = True) -> SessionCoordinator:
    """Wire the OpenCV camera, configured face detector, Whisper dictation and preview window."""
    from liveness.capture import OpenCVFrameSource
    from liveness.detection import build_face_detector
    from liveness.pip import OpenCVPipSurface
    # lazy import to avoid loading torch until a coordinator is actually built
    from liveness.asr import WhisperSpeechEngine

    scheduler = scheduler or ThreadScheduler()
    monitor = FaceMonitor(build_face_detector(settings), scheduler,
                          debounce_seconds=settings.MULTI_FACE_DEBOUNCE_SECONDS)
    speech = SpeechSession(WhisperSpeechEngine(settings), scheduler,
                           retry_delay=settings.SPEECH_RETRY_DELAY,
                           max_retries=settings.SPEECH_MAX_RETRIES)
    return SessionCoordinator(
        frame_source=OpenCVFrameSource(settings.CAMERA_INDEX, sample_rate=settings.AUDIO_SAMPLE_RATE),
        face_monitor=monitor,
        speech=speech,
        pip_surface=OpenCVPipSurface(settings.PIP_WINDOW_NAME) if with_preview else None,
        default_rate_hz=settings.FACE_SAMPLE_RATE_HZ,
    )
