"""Hardware-free stand-ins for the capability interfaces."""
import threading

import numpy as np

from liveness.capture import DeviceHandle, FrameSource
from liveness.detection import FaceDetector
from liveness.errors import AcquireError, SpeechError, SpeechErrorKind
from liveness.models import BoundingBox
from liveness.pip import PipSurface
from liveness.speech import SpeechEngine


class FakeTrack:
    def __init__(self):
        self.live = True
    def stop(self):
        self.live = False


class FakeFrameSource(FrameSource):
    def __init__(self, error: AcquireError | None = None, gate: threading.Event | None = None):
        self.error = error
        self.gate = gate
        self.entered = threading.Event()
        self.ready = True
        self.frame = np.zeros((48, 64, 3), dtype=np.uint8)
        self.handles: list[DeviceHandle] = []
        self.acquire_calls = 0
        self.release_calls = 0
        self._handle = None

    @property
    def is_acquired(self):
        return self._handle is not None and self._handle.active

    @property
    def held(self):
        """Any hardware track from any acquire still live."""
        return any(h.active for h in self.handles)

    def acquire(self, want_audio=False):
        self.acquire_calls += 1
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        handle = DeviceHandle(video=FakeTrack(), audio=FakeTrack() if want_audio else None)
        self.handles.append(handle)
        self._handle = handle
        return handle

    def read_latest(self):
        if not self.ready or not self.is_acquired:
            return None
        return self.frame.copy()

    def release(self):
        self.release_calls += 1
        if self._handle is not None:
            self._handle.stop()
            self._handle = None


class ScriptedDetector(FaceDetector):
    """Returns face counts from a script; an Exception entry is raised instead."""

    def __init__(self, script=None, default=1):
        self.script = list(script or [])
        self.default = default
        self.calls = 0

    def detect(self, frame):
        self.calls += 1
        item = self.script.pop(0) if self.script else self.default
        if isinstance(item, Exception):
            raise item
        return [BoundingBox(x=5 + i * 20, y=5, w=15, h=15) for i in range(item)]


class FakeSpeechEngine(SpeechEngine):
    def __init__(self, supported=True):
        self.supported = supported
        self.start_errors: list = []
        self.start_calls = 0
        self.stop_calls = 0
        self.listener = None
        self.running = False

    def is_supported(self):
        return self.supported

    def start(self, listener):
        self.start_calls += 1
        err = self.start_errors.pop(0) if self.start_errors else None
        if err is not None:
            raise err
        self.listener = listener
        self.running = True

    def stop(self):
        self.stop_calls += 1
        self.running = False

    # engine-side events
    def result(self, text, final=False):
        self.listener.on_result(text, final)

    def fail(self, kind=SpeechErrorKind.TRANSIENT, message="network"):
        self.running = False
        self.listener.on_error(SpeechError(kind, message))

    def end(self):
        self.running = False
        self.listener.on_end()


def transient():
    return SpeechError(SpeechErrorKind.TRANSIENT, "network")


class FakePipSurface(PipSurface):
    def __init__(self, supported=True, open_error=None):
        self.supported = supported
        self.open_error = open_error
        self.is_open = False
        self.presented = 0
        self._on_exit = None

    def is_supported(self):
        return self.supported

    def set_exit_listener(self, callback):
        self._on_exit = callback

    def open(self):
        if self.open_error is not None:
            raise self.open_error
        self.is_open = True

    def close(self):
        self.is_open = False

    def present(self, frame, observation, multiple_faces_flag=False):
        self.presented += 1

    def user_closed(self):
        self.is_open = False
        self._on_exit()
