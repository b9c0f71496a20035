import pytest
from pydantic import ValidationError

from liveness.models import (
    FaceMonitorState,
    FaceObservation,
    FatalError,
    SpeechSessionState,
    SpeechState,
    TranscriptEvent,
)


def test_face_count_cannot_be_negative():
    with pytest.raises(ValidationError):
        FaceObservation(timestamp=0.0, face_count=-1)


def test_monitor_state_face_count():
    assert FaceMonitorState().face_count == 0
    st = FaceMonitorState(last_observation=FaceObservation(timestamp=1.0, face_count=2))
    assert st.face_count == 2


def test_speech_state_listening():
    assert SpeechSessionState(state=SpeechState.LISTENING).is_listening
    assert not SpeechSessionState().is_listening


def test_events_carry_type_tag():
    assert TranscriptEvent(text="hi", is_final=True).model_dump()["type"] == "transcript"
    fe = FatalError(source="speech", kind="transient", message="x")
    assert '"type":"fatal_error"' in fe.model_dump_json()
    with pytest.raises(ValidationError):
        FatalError(source="keyboard", kind="x")
