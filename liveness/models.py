"""
Pydantic data models for session state and events.
"""
from __future__ import annotations
from enum import Enum
from pydantic import BaseModel, Field
from typing import List, Optional, Literal, Union


FaceStatus = Literal["no_face", "verified", "multiple_faces"]


class BoundingBox(BaseModel):
    x: int
    y: int
    w: int
    h: int


class FaceObservation(BaseModel):
    type: Literal["face_observation"] = "face_observation"
    timestamp: float
    face_count: int = Field(ge=0)
    bounding_boxes: List[BoundingBox] = Field(default_factory=list)


class MultipleFacesWarning(BaseModel):
    type: Literal["multiple_faces_warning"] = "multiple_faces_warning"
    timestamp: float
    face_count: int
    message: str = "Multiple faces detected. Please ensure only you are visible."


class FaceMonitorState(BaseModel):
    last_observation: Optional[FaceObservation] = None
    multiple_faces_flag: bool = False
    alerts_suppressed: bool = False

    @property
    def face_count(self) -> int:
        return self.last_observation.face_count if self.last_observation else 0


# session lifecycle


class SessionState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"
    FAILED = "failed"


class CaptureSession(BaseModel):
    state: SessionState = SessionState.IDLE
    has_audio: bool = False
    frame_rate_hz: float = 0.0
    failure_reason: Optional[str] = None


class PiPState(BaseModel):
    active: bool = False


# dictation


class SpeechState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    STOPPED = "stopped"
    ERRORING = "erroring"


class SpeechSessionState(BaseModel):
    state: SpeechState = SpeechState.IDLE
    transcript: str = ""
    retry_count: int = 0
    has_support: bool = True

    @property
    def is_listening(self) -> bool:
        return self.state == SpeechState.LISTENING


class TranscriptEvent(BaseModel):
    type: Literal["transcript"] = "transcript"
    text: str
    is_final: bool
    transcript: str = ""


class SpeechStatusEvent(BaseModel):
    type: Literal["speech_status"] = "speech_status"
    state: SpeechState
    retry_count: int = 0
    message: Optional[str] = None


class FatalError(BaseModel):
    type: Literal["fatal_error"] = "fatal_error"
    source: Literal["capture", "speech", "pip"]
    kind: str
    message: str = ""


SessionEvent = Union[
    FaceObservation,
    MultipleFacesWarning,
    TranscriptEvent,
    SpeechStatusEvent,
    FatalError,
]


class SessionSnapshot(BaseModel):
    session: CaptureSession
    face: FaceMonitorState
    speech: SpeechSessionState
    pip: PiPState
