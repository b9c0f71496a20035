"""
Error taxonomy for capture, detection, preview, dictation and session control.
"""
from __future__ import annotations
from enum import Enum


class AcquireErrorKind(str, Enum):
    UNSUPPORTED = "unsupported"
    PERMISSION_DENIED = "permission_denied"
    DEVICE_UNAVAILABLE = "device_unavailable"


class PiPErrorKind(str, Enum):
    UNSUPPORTED = "unsupported"
    DENIED = "denied"
    INVALID_STATE = "invalid_state"


class SpeechErrorKind(str, Enum):
    TRANSIENT = "transient"
    PERMISSION_DENIED = "permission_denied"
    UNSUPPORTED = "unsupported"
    ABORTED = "aborted"


class CoordinatorErrorKind(str, Enum):
    ALREADY_ACTIVE = "already_active"
    NOT_ACTIVE = "not_active"
    CANCELLED = "cancelled"


class LivenessError(Exception):
    """Base class for errors raised by the liveness package."""

    def __init__(self, kind: Enum | None = None, message: str = ""):
        self.kind = kind
        self.message = message or (kind.value if kind is not None else "")
        super().__init__(self.message)


class AcquireError(LivenessError):
    """Camera/microphone could not be acquired."""


class DetectionError(LivenessError):
    """Face detection failed for a single frame (never session-fatal)."""


class PiPError(LivenessError):
    """Picture-in-picture preview could not be toggled."""


class SpeechError(LivenessError):
    """Speech recognition engine failure."""

    @property
    def transient(self) -> bool:
        return self.kind == SpeechErrorKind.TRANSIENT


class CoordinatorError(LivenessError):
    """Session start/stop used out of order."""
