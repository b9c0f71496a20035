"""
Whisper ASR wrapper (lazy-loaded) and a live dictation engine built on it.

WhisperSpeechEngine captures microphone audio with sounddevice and, every
SPEECH_INTERIM_INTERVAL seconds, transcribes the current utterance:
- interim result while the speaker keeps talking
- final result once the tail of the utterance has been silent for
  MIN_SILENCE_DUR seconds (librosa RMS) or it reached SPEECH_MAX_UTTERANCE_SECONDS
"""
from __future__ import annotations

import logging
import os
import tempfile
import threading
import time
from typing import List, Optional

import librosa
import numpy as np
import sounddevice as sd
import soundfile as sf
import whisper

from liveness.config import Settings
from liveness.errors import SpeechError, SpeechErrorKind
from liveness.speech import SpeechEngine, SpeechListener

logger = logging.getLogger(__name__)

_model = None

def _ensure_model(settings: Settings):
    global _model
    if _model is None:
        _model = whisper.load_model(settings.WHISPER_MODEL, device=settings.DEVICE)
    return _model

def transcribe_audio(audio_path: str, settings: Settings) -> str:
    """
    Transcribe audio with Whisper.

    - Uses device from Settings (cpu/cuda)
    - Disables fp16 on CPU to avoid the 'FP16 is not supported on CPU' warning
    """
    model = _ensure_model(settings)

    use_fp16 = settings.DEVICE == "cuda"  # FP16 only makes sense on GPU
    result = model.transcribe(audio_path, fp16=use_fp16, language=settings.SPEECH_LANGUAGE or None)

    return result.get("text", "").strip()


def _rms(audio: np.ndarray) -> np.ndarray:
    return librosa.feature.rms(y=audio, frame_length=2048, hop_length=512, center=True)[0]


def _threshold(rms: np.ndarray, threshold: Optional[float]) -> float:
    if threshold is not None:
        return float(threshold)
    # relative to the loud part of the window
    return max(float(np.percentile(rms, 90)) * 0.1, 1e-3)


def has_speech(audio: np.ndarray, threshold: Optional[float] = None, floor: float = 0.005) -> bool:
    """True if any part of the window is louder than the absolute floor (or threshold)."""
    if audio.size == 0:
        return False
    rms = _rms(audio)
    return bool(np.max(rms) >= (threshold if threshold is not None else floor))


def ends_in_silence(audio: np.ndarray, sample_rate: int, min_silence_dur: float,
                    threshold: Optional[float] = None, hop_length: int = 512) -> bool:
    """True if the last min_silence_dur seconds of the window are below the RMS threshold."""
    if audio.size < int(sample_rate * min_silence_dur):
        return False
    rms = _rms(audio)
    tail = max(1, int(np.ceil(min_silence_dur * sample_rate / hop_length)))
    return bool(np.all(rms[-tail:] < _threshold(rms, threshold)))


class WhisperSpeechEngine(SpeechEngine):
    def __init__(self, settings: Settings):
        self.s = settings
        self._lock = threading.Lock()
        self._utterance: List[np.ndarray] = []
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def is_supported(self) -> bool:
        try:
            sd.query_devices(kind="input")
        except (ValueError, sd.PortAudioError):
            return False
        return True

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def start(self, listener: SpeechListener) -> None:
        if self.running:
            return
        # microphone is checked lazily, on start
        try:
            sd.query_devices(kind="input")
        except (ValueError, sd.PortAudioError) as e:
            raise SpeechError(SpeechErrorKind.UNSUPPORTED, f"No microphone available: {e}") from e

        try:
            _ensure_model(self.s)
        except (OSError, RuntimeError) as e:
            # model weights are downloaded on first use; network failures are worth retrying
            raise SpeechError(SpeechErrorKind.TRANSIENT, f"Could not load speech model: {e}") from e

        sr = self.s.AUDIO_SAMPLE_RATE
        with self._lock:
            self._utterance = []

        def callback(indata, frames, time_info, status):
            with self._lock:
                self._utterance.append(indata.copy().astype(np.float32).reshape(-1))

        try:
            stream = sd.InputStream(callback=callback, channels=1, samplerate=sr,
                                    blocksize=int(sr * self.s.SPEECH_CHUNK_SECONDS))
            stream.start()
        except sd.PortAudioError as e:
            raise SpeechError(SpeechErrorKind.PERMISSION_DENIED,
                              f"Microphone access denied. Please allow microphone permissions. ({e})") from e

        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, args=(listener, stream, self._stop), daemon=True)
        self._thread.start()
        logger.debug(f"[asr] listening sr={sr} model={self.s.WHISPER_MODEL}")

    def stop(self) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5.0)
        self._thread = None

    # ---- worker ----
    def _snapshot(self) -> np.ndarray:
        with self._lock:
            if not self._utterance:
                return np.zeros(0, dtype=np.float32)
            return np.concatenate(self._utterance, axis=0)

    def _consume(self, n: int) -> None:
        """Drop the first n samples (the finalized utterance), keep what arrived since."""
        with self._lock:
            if not self._utterance:
                return
            audio = np.concatenate(self._utterance, axis=0)
            self._utterance = [audio[n:]] if audio.shape[0] > n else []

    def _transcribe(self, audio: np.ndarray) -> str:
        # Whisper prefers a file path; write temp wav
        with tempfile.NamedTemporaryFile(delete=False, suffix=".wav") as tmp:
            tmp_path = tmp.name
        sf.write(tmp_path, audio, self.s.AUDIO_SAMPLE_RATE)
        try:
            text = transcribe_audio(tmp_path, self.s)
        finally:
            try:
                os.remove(tmp_path)
            except OSError:
                logger.warning(f"[asr] failed to cleanup tmp file: {tmp_path}")
        return text

    def _loop(self, listener: SpeechListener, stream, stop: threading.Event) -> None:
        sr = self.s.AUDIO_SAMPLE_RATE
        try:
            while not stop.wait(self.s.SPEECH_INTERIM_INTERVAL):
                if not stream.active:
                    logger.info("[asr] input stream ended")
                    listener.on_end()
                    return
                audio = self._snapshot()
                if audio.size == 0:
                    continue
                duration = audio.shape[0] / float(sr)
                if not has_speech(audio, self.s.SILENCE_THRESHOLD):
                    # nothing said yet; don't let silence pile up
                    if duration >= self.s.MIN_SILENCE_DUR:
                        self._consume(audio.shape[0])
                    continue

                final = (duration >= self.s.SPEECH_MAX_UTTERANCE_SECONDS
                         or ends_in_silence(audio, sr, self.s.MIN_SILENCE_DUR, self.s.SILENCE_THRESHOLD))
                text = self._transcribe(audio)
                if stop.is_set():
                    return
                if final:
                    self._consume(audio.shape[0])
                if text or final:
                    listener.on_result(text, final)
        except Exception as e:
            logger.exception("[asr] transcription failed")
            if not stop.is_set():
                listener.on_error(SpeechError(SpeechErrorKind.TRANSIENT, f"Transcription failed: {e}"))
        finally:
            try:
                stream.stop()
                stream.close()
            except sd.PortAudioError:
                logger.debug("[asr] input stream already closed")
