import threading

import pytest

from liveness.coordinator import SessionCoordinator
from liveness.errors import (
    AcquireError,
    AcquireErrorKind,
    CoordinatorError,
    CoordinatorErrorKind,
    PiPError,
    PiPErrorKind,
)
from liveness.models import FaceObservation, FatalError, MultipleFacesWarning, SessionState, SpeechState
from liveness.monitor import FaceMonitor
from liveness.speech import SpeechSession

from doubles import FakePipSurface, ScriptedDetector, transient


def _events(coordinator):
    seen = []
    coordinator.subscribe(seen.append)
    return seen


def test_start_samples_and_stop_releases(coordinator, source, clock):
    seen = _events(coordinator)
    session = coordinator.request_start(want_audio=True)
    assert session.state == SessionState.ACTIVE
    assert session.has_audio is True
    assert session.frame_rate_hz == 5.0

    clock.advance(1.0)
    assert sum(isinstance(e, FaceObservation) for e in seen) == 5
    assert coordinator.face_state().face_count == 1

    assert coordinator.stop() is True
    assert not source.held
    assert clock.pending_count() == 0
    assert coordinator.session().state == SessionState.IDLE
    assert coordinator.face_state().last_observation is None
    clock.advance(1.0)
    assert sum(isinstance(e, FaceObservation) for e in seen) == 5


def test_second_start_is_rejected(coordinator, source, clock):
    seen = _events(coordinator)
    first = coordinator.request_start()
    with pytest.raises(CoordinatorError) as exc:
        coordinator.request_start()
    assert exc.value.kind == CoordinatorErrorKind.ALREADY_ACTIVE
    assert source.acquire_calls == 1

    # the running session is untouched and keeps sampling
    assert coordinator.session().state == SessionState.ACTIVE
    assert coordinator.session() == first
    assert source.is_acquired
    clock.advance(0.4)
    assert sum(isinstance(e, FaceObservation) for e in seen) == 2


def test_invalid_rate(coordinator, source):
    with pytest.raises(ValueError):
        coordinator.request_start(rate_hz=0)
    assert source.acquire_calls == 0


def test_stop_when_idle_is_noop(coordinator):
    assert coordinator.stop() is False
    assert coordinator.stop() is False


def test_acquire_failure_reports_and_allows_retry(coordinator, source):
    seen = _events(coordinator)
    source.error = AcquireError(AcquireErrorKind.PERMISSION_DENIED, "denied")
    with pytest.raises(AcquireError):
        coordinator.request_start()
    session = coordinator.session()
    assert session.state == SessionState.FAILED
    assert session.failure_reason == "permission_denied"
    fatal = [e for e in seen if isinstance(e, FatalError)]
    assert len(fatal) == 1 and fatal[0].source == "capture"
    assert not source.held

    source.error = None
    assert coordinator.request_start().state == SessionState.ACTIVE


def test_driver_crash_fails_session_and_allows_retry(coordinator, source):
    seen = _events(coordinator)
    source.error = RuntimeError("driver crashed")
    with pytest.raises(RuntimeError):
        coordinator.request_start()
    session = coordinator.session()
    assert session.state == SessionState.FAILED
    assert session.failure_reason == "device_unavailable"
    fatal = [e for e in seen if isinstance(e, FatalError)]
    assert len(fatal) == 1 and "driver crashed" in fatal[0].message
    assert source.release_calls == 1

    source.error = None
    assert coordinator.request_start().state == SessionState.ACTIVE


def test_stop_during_acquire_cancels_start(coordinator, source, clock):
    source.gate = threading.Event()
    outcome = []

    def start():
        try:
            coordinator.request_start(want_audio=True)
        except CoordinatorError as e:
            outcome.append(e)

    t = threading.Thread(target=start)
    t.start()
    assert source.entered.wait(timeout=5)
    assert coordinator.session().state == SessionState.STARTING

    assert coordinator.stop() is True
    source.gate.set()
    t.join(timeout=5)

    assert len(outcome) == 1
    assert outcome[0].kind == CoordinatorErrorKind.CANCELLED
    assert source.handles and not source.held
    assert clock.pending_count() == 0
    assert coordinator.session().state == SessionState.IDLE


def test_face_monitoring_optional(coordinator, clock):
    seen = _events(coordinator)
    coordinator.request_start(want_face_monitoring=False)
    clock.advance(1.0)
    assert seen == []
    assert clock.pending_count() == 0


def test_multiple_faces_warning_flows_to_subscribers(source, engine, clock):
    monitor = FaceMonitor(ScriptedDetector([1, 2, 2]), clock)
    coordinator = SessionCoordinator(source, monitor, SpeechSession(engine, clock))
    seen = _events(coordinator)
    coordinator.request_start()
    clock.advance(0.6)
    warnings = [e for e in seen if isinstance(e, MultipleFacesWarning)]
    assert len(warnings) == 1
    assert coordinator.snapshot().face.multiple_faces_flag is True


def test_stop_cancels_pending_speech_retry(coordinator, engine, clock):
    coordinator.request_start()
    coordinator.start_dictation()
    engine.start_errors = [transient()]
    engine.fail()
    assert coordinator.speech_state().state == SpeechState.ERRORING

    coordinator.stop()
    assert clock.pending_count() == 0
    clock.advance(10)
    assert engine.start_calls == 1
    assert coordinator.speech_state().state == SpeechState.STOPPED


def test_dictation_events_are_published(coordinator, engine):
    seen = _events(coordinator)
    coordinator.start_dictation()
    engine.result("hello", final=True)
    coordinator.reset_transcript()
    types = [e.type for e in seen]
    assert types == ["speech_status", "transcript", "transcript"]
    assert coordinator.speech_state().transcript == ""


def test_capture_photo(coordinator, source):
    with pytest.raises(CoordinatorError) as exc:
        coordinator.capture_photo()
    assert exc.value.kind == CoordinatorErrorKind.NOT_ACTIVE

    coordinator.request_start()
    png = coordinator.capture_photo()
    assert png[:4] == b"\x89PNG"

    source.ready = False
    assert coordinator.capture_photo() is None


def test_pip_requires_active_session(coordinator, surface, clock):
    with pytest.raises(PiPError) as exc:
        coordinator.toggle_pip()
    assert exc.value.kind == PiPErrorKind.INVALID_STATE

    coordinator.request_start()
    assert coordinator.toggle_pip() is True
    assert surface.is_open
    clock.advance(0.4)
    assert surface.presented == 2

    surface.user_closed()
    assert coordinator.pip_state().active is False
    assert coordinator.toggle_pip() is True

    coordinator.stop()
    assert not surface.is_open
    assert coordinator.pip_state().active is False


def test_pip_unsupported(source, detector, engine, clock):
    bare = SessionCoordinator(source, FaceMonitor(detector, clock), SpeechSession(engine, clock))
    bare.request_start()
    with pytest.raises(PiPError) as exc:
        bare.toggle_pip()
    assert exc.value.kind == PiPErrorKind.UNSUPPORTED

    no_pip = SessionCoordinator(source, FaceMonitor(detector, clock), SpeechSession(engine, clock),
                                pip_surface=FakePipSurface(supported=False))
    bare.stop()
    no_pip.request_start()
    with pytest.raises(PiPError) as exc:
        no_pip.toggle_pip()
    assert exc.value.kind == PiPErrorKind.UNSUPPORTED


def test_snapshot_shape(coordinator):
    snap = coordinator.snapshot()
    assert snap.session.state == SessionState.IDLE
    assert snap.speech.state == SpeechState.IDLE
    assert snap.pip.active is False
    assert snap.face.face_count == 0
