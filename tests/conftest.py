import pytest

from liveness.coordinator import SessionCoordinator
from liveness.monitor import FaceMonitor
from liveness.speech import SpeechSession
from liveness.timers import ManualScheduler

from doubles import FakeFrameSource, FakePipSurface, FakeSpeechEngine, ScriptedDetector


@pytest.fixture
def clock():
    return ManualScheduler()

@pytest.fixture
def source():
    return FakeFrameSource()

@pytest.fixture
def detector():
    return ScriptedDetector()

@pytest.fixture
def engine():
    return FakeSpeechEngine()

@pytest.fixture
def surface():
    return FakePipSurface()

@pytest.fixture
def events():
    return []

@pytest.fixture
def speech(engine, clock, events):
    return SpeechSession(engine, clock, retry_delay=3.0, max_retries=3, on_event=events.append)

@pytest.fixture
def coordinator(source, detector, engine, surface, clock):
    monitor = FaceMonitor(detector, clock, debounce_seconds=3.0)
    return SessionCoordinator(source, monitor, SpeechSession(engine, clock), pip_surface=surface)
