"""
Configuration for the liveness monitoring session.
"""
from pydantic import BaseModel
import os

class Settings(BaseModel):
    """
    Runtime settings with environment-variable overrides.
    """
    DEVICE: str = (os.getenv("DEVICE", "cpu") or "cpu")

    # Camera / face monitoring
    CAMERA_INDEX: int = int(os.getenv("CAMERA_INDEX", "0"))
    FACE_SAMPLE_RATE_HZ: float = float(os.getenv("FACE_SAMPLE_RATE_HZ", "5"))
    MULTI_FACE_DEBOUNCE_SECONDS: float = float(os.getenv("MULTI_FACE_DEBOUNCE_SECONDS", "3"))
    FACE_DETECTOR: str = os.getenv("FACE_DETECTOR", "haar")
    DEEPFACE_BACKEND: str = os.getenv("DEEPFACE_BACKEND", "opencv")
    DETECT_WIDTH: int = int(os.getenv("DETECT_WIDTH", "480"))
    MIN_BOX_FRACTION: float = float(os.getenv("MIN_BOX_FRACTION", "0.01"))
    MAX_BOX_FRACTION: float = float(os.getenv("MAX_BOX_FRACTION", "0.60"))

    # Dictation
    WHISPER_MODEL: str = os.getenv("WHISPER_MODEL", "base")
    SPEECH_LANGUAGE: str = os.getenv("SPEECH_LANGUAGE", "en")
    AUDIO_SAMPLE_RATE: int = int(os.getenv("AUDIO_SAMPLE_RATE", "16000"))
    SPEECH_CHUNK_SECONDS: float = float(os.getenv("SPEECH_CHUNK_SECONDS", "0.5"))
    SPEECH_INTERIM_INTERVAL: float = float(os.getenv("SPEECH_INTERIM_INTERVAL", "1.5"))
    SPEECH_MAX_UTTERANCE_SECONDS: float = float(os.getenv("SPEECH_MAX_UTTERANCE_SECONDS", "12"))
    MIN_SILENCE_DUR: float = float(os.getenv("MIN_SILENCE_DUR", "0.6"))
    SILENCE_THRESHOLD: float | None = (
        float(os.getenv("SILENCE_THRESHOLD")) if os.getenv("SILENCE_THRESHOLD") else None
    )
    SPEECH_RETRY_DELAY: float = float(os.getenv("SPEECH_RETRY_DELAY", "3"))
    SPEECH_MAX_RETRIES: int = int(os.getenv("SPEECH_MAX_RETRIES", "3"))

    # Preview window
    PIP_WINDOW_NAME: str = os.getenv("PIP_WINDOW_NAME", "Liveness Preview")

    def __init__(self, **data):
        super().__init__(**data)
        # Normalize DEVICE: strip comments/extra words, lower-case, validate
        dev = (self.DEVICE or "cpu").strip().split()[0].lower()
        if dev not in ("cpu", "cuda"):
            dev = "cpu"
        object.__setattr__(self, "DEVICE", dev)

        detector = (self.FACE_DETECTOR or "haar").strip().lower()
        if detector not in ("haar", "deepface"):
            detector = "haar"
        object.__setattr__(self, "FACE_DETECTOR", detector)
