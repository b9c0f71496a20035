"""
Dictation session over a speech recognition engine.

State machine:
    IDLE -> LISTENING                 start() succeeded
    LISTENING -> STOPPED              stop() or the engine ended the session
    LISTENING -> ERRORING -> LISTENING      transient error, retried after a fixed delay
    LISTENING -> ERRORING -> STOPPED        retry budget exhausted (reported as fatal)
    any -> STOPPED                    non-transient error (reported, never retried)

retry_count is plain data: it grows by one per scheduled retry, goes back to
0 on an explicit start() and as soon as the engine delivers a result, and is
left at its maximum when the budget runs out.

Engine callbacks carry the generation they were started with; stop() bumps
the generation so late callbacks from a stopped run (and a retry timer that
was already firing) are ignored.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from liveness.errors import SpeechError, SpeechErrorKind
from liveness.models import (
    FatalError,
    SessionEvent,
    SpeechSessionState,
    SpeechState,
    SpeechStatusEvent,
    TranscriptEvent,
)
from liveness.timers import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY = 3.0
DEFAULT_MAX_RETRIES = 3


class SpeechListener:
    """Callbacks handed to an engine for one run."""

    def __init__(self, session: "SpeechSession", generation: int):
        self._session = session
        self.generation = generation

    def on_result(self, text: str, is_final: bool) -> None:
        self._session._on_result(self.generation, text, is_final)

    def on_error(self, error: SpeechError) -> None:
        self._session._on_error(self.generation, error)

    def on_end(self) -> None:
        self._session._on_end(self.generation)


class SpeechEngine:
    """Capability interface for an incremental speech recognizer."""

    def is_supported(self) -> bool:
        return True

    def start(self, listener: SpeechListener) -> None:
        """Begin recognition; microphone access is checked here. Raises SpeechError."""
        raise NotImplementedError

    def stop(self) -> None:
        """Stop recognition; safe to call when not running."""
        raise NotImplementedError


class SpeechSession:
    def __init__(self, engine: SpeechEngine, scheduler: Scheduler,
                 retry_delay: float = DEFAULT_RETRY_DELAY,
                 max_retries: int = DEFAULT_MAX_RETRIES,
                 on_event: Optional[Callable[[SessionEvent], None]] = None):
        self.engine = engine
        self.scheduler = scheduler
        self.retry_delay = float(retry_delay)
        self.max_retries = int(max_retries)
        self.on_event = on_event

        self._lock = threading.RLock()
        self._state = SpeechState.IDLE
        self._finals: List[str] = []
        self._interim = ""
        self._retry_count = 0
        self._retry_handle: Optional[TimerHandle] = None
        self._generation = 0

    # ---- read-only views ----
    @property
    def has_support(self) -> bool:
        return self.engine.is_supported()

    @property
    def state_name(self) -> SpeechState:
        with self._lock:
            return self._state

    @property
    def is_listening(self) -> bool:
        return self.state_name == SpeechState.LISTENING

    @property
    def transcript(self) -> str:
        with self._lock:
            return self._compose()

    @property
    def retry_count(self) -> int:
        with self._lock:
            return self._retry_count

    def state(self) -> SpeechSessionState:
        with self._lock:
            return SpeechSessionState(
                state=self._state,
                transcript=self._compose(),
                retry_count=self._retry_count,
                has_support=self.has_support,
            )

    def _compose(self) -> str:
        parts = self._finals + ([self._interim] if self._interim else [])
        return " ".join(parts)

    def _promote_interim(self) -> None:
        if self._interim:
            self._finals.append(self._interim)
            self._interim = ""

    def _publish(self, events: List[SessionEvent]) -> None:
        if self.on_event is None:
            return
        for ev in events:
            self.on_event(ev)

    # ---- commands ----
    def start(self) -> None:
        """Begin listening. Raises SpeechError for failures that are not retried."""
        with self._lock:
            if self._state == SpeechState.LISTENING:
                return
            handle, self._retry_handle = self._retry_handle, None
            self._retry_count = 0
            self._generation += 1
            generation = self._generation
        if handle is not None:
            handle.cancel()

        err = self._launch(generation)
        if err is not None and self.state_name == SpeechState.STOPPED:
            raise err

    def stop(self) -> None:
        """Stop listening and cancel any pending retry. Transcript is kept."""
        events: List[SessionEvent] = []
        with self._lock:
            self._generation += 1
            handle, self._retry_handle = self._retry_handle, None
            was = self._state
            self._promote_interim()
            if was in (SpeechState.LISTENING, SpeechState.ERRORING):
                self._state = SpeechState.STOPPED
                events.append(SpeechStatusEvent(state=SpeechState.STOPPED, retry_count=self._retry_count,
                                                message="Speech recognition stopped."))
        if handle is not None:
            handle.cancel()
        if was in (SpeechState.LISTENING, SpeechState.ERRORING):
            self.engine.stop()
            logger.info("[speech] stopped")
        self._publish(events)

    def reset_transcript(self) -> None:
        """Clear the transcript. Only a listening session reports the change as an event."""
        with self._lock:
            self._finals = []
            self._interim = ""
            listening = self._state == SpeechState.LISTENING
        if listening:
            self._publish([TranscriptEvent(text="", is_final=True, transcript="")])

    # ---- engine run ----
    def _launch(self, generation: int) -> Optional[SpeechError]:
        if not self.engine.is_supported():
            err = SpeechError(SpeechErrorKind.UNSUPPORTED, "Speech recognition is not supported")
            self._on_error(generation, err)
            return err
        try:
            self.engine.start(SpeechListener(self, generation))
        except SpeechError as err:
            self._on_error(generation, err)
            return err

        with self._lock:
            stale = generation != self._generation
            if not stale and self._retry_handle is not None:
                # the engine already reported an error from inside start()
                return None
            if not stale:
                self._state = SpeechState.LISTENING
                retry_count = self._retry_count
        if stale:
            # stop() ran while the engine was starting
            self.engine.stop()
            return None
        logger.info("[speech] listening")
        self._publish([SpeechStatusEvent(state=SpeechState.LISTENING, retry_count=retry_count,
                                         message="Listening...")])
        return None

    def _retry(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._state != SpeechState.ERRORING:
                return
            self._retry_handle = None
            attempt = self._retry_count
        logger.info(f"[speech] retry attempt {attempt}/{self.max_retries}")
        self._launch(generation)

    def _on_result(self, generation: int, text: str, is_final: bool) -> None:
        with self._lock:
            if generation != self._generation or self._state != SpeechState.LISTENING:
                return
            # engine is producing results again: the failure streak is over
            self._retry_count = 0
            text = (text or "").strip()
            if is_final:
                if text:
                    self._finals.append(text)
                self._interim = ""
            else:
                self._interim = text
            event = TranscriptEvent(text=text, is_final=is_final, transcript=self._compose())
        self._publish([event])

    def _on_error(self, generation: int, error: SpeechError) -> None:
        events: List[SessionEvent] = []
        with self._lock:
            if generation != self._generation:
                return
            if self._state == SpeechState.ERRORING and self._retry_handle is not None:
                # already waiting to retry this run
                return
            self._promote_interim()
            if error.transient and self._retry_count < self.max_retries:
                self._retry_count += 1
                self._state = SpeechState.ERRORING
                self._retry_handle = self.scheduler.call_later(
                    self.retry_delay, lambda: self._retry(generation))
                message = (f"Network error. Retrying in {self.retry_delay:g} seconds... "
                           f"(attempt {self._retry_count}/{self.max_retries})")
                logger.warning(f"[speech] {error.message}; {message}")
                events.append(SpeechStatusEvent(state=SpeechState.ERRORING,
                                                retry_count=self._retry_count, message=message))
            else:
                self._state = SpeechState.STOPPED
                self._generation += 1
                if error.transient:
                    message = "Max retry limit reached. Check your network and try again later."
                else:
                    message = error.message
                logger.error(f"[speech] {error.kind.value if error.kind else 'error'}: {message}")
                events.append(SpeechStatusEvent(state=SpeechState.STOPPED,
                                                retry_count=self._retry_count, message=message))
                events.append(FatalError(source="speech",
                                         kind=error.kind.value if error.kind else "unknown",
                                         message=message))
        # the failed run is over either way; release the microphone
        self.engine.stop()
        self._publish(events)

    def _on_end(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._state != SpeechState.LISTENING:
                return
            self._promote_interim()
            self._state = SpeechState.STOPPED
            retry_count = self._retry_count
        logger.info("[speech] engine ended the session")
        self._publish([SpeechStatusEvent(state=SpeechState.STOPPED, retry_count=retry_count)])
