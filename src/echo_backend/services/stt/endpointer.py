"""
Microphone endpointing on top of a continuous speech recognizer.

The recognizer supplies text; the decision that the user has finished
speaking is made here from the microphone volume. Once the level has stayed
below the threshold for the configured silence period and enough text has
accumulated, the transcript is emitted as one utterance and recognition is
restarted with a fresh stream.

While the assistant is speaking the recognizer is torn down so it cannot hear
the assistant's own voice; only the volume poller keeps running, and a
sustained loud input is reported as a barge-in.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from ...audio.interfaces import (
    AudioCapturer,
    RecognitionConfig,
    RecognitionEnded,
    RecognitionError,
    RecognitionEvent,
    RecognitionResult,
    SpeechRecognizer,
)
from ...config import CaptureSettings
from ...errors import PERMISSION_DENIED, CaptureError
from ...schemas.conversation import Utterance
from ..cancellation import ScheduledTask
from .volume import is_speech, measure_volume

if TYPE_CHECKING:
    from ...conversation.session import SessionContext

logger = logging.getLogger(__name__)


class CaptureState(str, Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    LISTENING = "listening"
    COOLDOWN = "cooldown"
    MONITORING = "monitoring"
    RETRY_WAIT = "retry_wait"


class SpeechCaptureEndpointer:
    """Turn a continuous recognizer plus a volume meter into discrete utterances."""

    def __init__(
        self,
        recognizer: SpeechRecognizer,
        capturer: AudioCapturer,
        settings: Optional[CaptureSettings] = None,
        *,
        on_utterance: Optional[Callable[[Utterance], None]] = None,
        on_interim_activity: Optional[Callable[[], None]] = None,
        on_fatal_error: Optional[Callable[[str], None]] = None,
        language: str = "en-US",
        clock: Optional[Callable[[], float]] = None,
    ):
        self._recognizer = recognizer
        self._capturer = capturer
        self._settings = settings or CaptureSettings()
        self.on_utterance = on_utterance
        self.on_interim_activity = on_interim_activity
        self.on_fatal_error = on_fatal_error
        self._language = language
        self._clock = clock or time.monotonic

        self._context: Optional[SessionContext] = None
        self._state = CaptureState.IDLE
        self._transcript = ""
        self._silence_started: Optional[float] = None
        self._retry_count = 0
        self._peer_speaking = False

        self._recognizing = False
        self._events: Optional[asyncio.Queue[RecognitionEvent]] = None
        self._event_task: Optional[asyncio.Task[None]] = None
        self._poll_task: Optional[asyncio.Task[None]] = None
        self._pending_start: Optional[ScheduledTask] = None

        self._barge_in_ticks = 0
        self._barge_in_fired = False
        self.hard_restarts = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def transcript(self) -> str:
        return self._transcript

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def is_active(self) -> bool:
        return self._context is not None and self._context.active

    @property
    def is_recognizing(self) -> bool:
        return self._recognizing

    @property
    def peer_speaking(self) -> bool:
        return self._peer_speaking

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    async def start_session(self, context: SessionContext) -> None:
        if self.is_active:
            logger.debug("Capture session already running")
            return
        self._context = context
        self._transcript = ""
        self._silence_started = None
        self._retry_count = 0
        self._peer_speaking = False
        self.hard_restarts = 0
        await self._acquire_and_listen()

    async def stop_session(self) -> None:
        if self._context is None:
            return
        self._cancel_pending_start()
        try:
            await self._stop_recognition()
        finally:
            self._stop_polling()
            await self._capturer.release()
            self._context = None
            self._state = CaptureState.IDLE
            self._transcript = ""
            self._silence_started = None
            self._retry_count = 0
            self._peer_speaking = False
            logger.info("Capture session stopped")

    async def set_peer_speaking(self, speaking: bool) -> None:
        """Mark whether the assistant is audible and switch modes accordingly."""
        if speaking == self._peer_speaking:
            return
        self._peer_speaking = speaking
        self._barge_in_ticks = 0
        self._barge_in_fired = False
        if speaking:
            # A pending microphone reacquire must still run; it enters MONITORING
            if self._capturer.is_acquired:
                self._cancel_pending_start()
            await self._stop_recognition()
            if not self._peer_speaking:
                return
            self._transcript = ""
            self._silence_started = None
            if self.is_active and self._capturer.is_acquired:
                self._state = CaptureState.MONITORING
            logger.debug("Peer speaking: recognition suspended")
            return

        if self.is_active:
            self._schedule_start(self._settings.restart_delay, "peer-finished")
            logger.debug("Peer finished: recognition resumes")

    # ------------------------------------------------------------------
    # Volume polling
    # ------------------------------------------------------------------
    def check_volume(self, now: Optional[float] = None) -> bool:
        """Run one polling step; returns whether the input counted as speech."""
        now = self._clock() if now is None else now
        volume = measure_volume(self._capturer.latest_window())

        if self._peer_speaking:
            return self._track_barge_in(volume)

        speaking = is_speech(volume, self._settings.volume_threshold)
        if speaking:
            self._silence_started = None
            if self._state is CaptureState.COOLDOWN:
                self._state = CaptureState.LISTENING
            return True

        if self._silence_started is None:
            self._silence_started = now
            if self._state is CaptureState.LISTENING:
                self._state = CaptureState.COOLDOWN
        elif (
            now - self._silence_started >= self._settings.silence_duration
            and len(self._transcript.strip()) >= self._settings.min_speech_length
        ):
            self._emit_utterance()
        return False

    def _track_barge_in(self, volume: float) -> bool:
        loud = volume > self._settings.barge_in_volume_threshold
        self._barge_in_ticks = self._barge_in_ticks + 1 if loud else 0
        if (
            not self._barge_in_fired
            and self._barge_in_ticks >= self._settings.barge_in_min_ticks
        ):
            self._barge_in_fired = True
            logger.info("Barge-in detected (volume %.3f)", volume)
            if self.on_interim_activity is not None:
                self.on_interim_activity()
        return loud

    def _start_polling(self) -> None:
        if self._context is None:
            return
        self._stop_polling()
        self._poll_task = self._context.spawn(self._poll_volume(), name="volume-poll")

    def _stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _poll_volume(self) -> None:
        interval = self._settings.volume_check_interval
        while True:
            if self._capturer.is_acquired:
                self.check_volume()
            await asyncio.sleep(interval)

    def _emit_utterance(self) -> None:
        text = self._transcript.strip()
        self._transcript = ""
        self._silence_started = None
        utterance = Utterance(text=text)
        logger.info("Utterance complete (%d chars)", len(text))
        if self.on_utterance is not None:
            self.on_utterance(utterance)
        if self._context is not None and self.is_active and not self._peer_speaking:
            self._context.spawn(self._restart_recognition(), name="recognition-restart")

    async def _restart_recognition(self) -> None:
        await self._stop_recognition()
        if self.is_active and not self._peer_speaking:
            self._state = CaptureState.LISTENING
            self._schedule_start(self._settings.restart_delay, "restart")

    # ------------------------------------------------------------------
    # Recognition stream management
    # ------------------------------------------------------------------
    async def _acquire_and_listen(self) -> None:
        self._state = CaptureState.ACQUIRING
        try:
            await self._capturer.acquire()
        except CaptureError as exc:
            await self._handle_failure(exc.kind, exc.detail)
            return
        self._start_polling()
        if self._peer_speaking:
            self._state = CaptureState.MONITORING
        else:
            await self._start_recognition()

    def _schedule_start(self, delay: float, reason: str) -> None:
        if self._context is None or not self.is_active:
            return
        self._cancel_pending_start()
        self._pending_start = self._context.schedule(
            delay, self._start_if_allowed, name=f"recognition-{reason}"
        )

    def _cancel_pending_start(self) -> None:
        pending, self._pending_start = self._pending_start, None
        if pending is not None:
            pending.cancel()

    async def _start_if_allowed(self) -> None:
        # Running now, so a nested reschedule must not cancel this task
        self._pending_start = None
        if not self.is_active:
            return
        if not self._capturer.is_acquired:
            await self._acquire_and_listen()
            return
        if self._peer_speaking or self._recognizing:
            return
        await self._start_recognition()

    async def _start_recognition(self) -> None:
        if self._context is None:
            return
        await self._stop_recognition()
        events: asyncio.Queue[RecognitionEvent] = asyncio.Queue()
        self._events = events
        self._recognizing = True
        self._state = CaptureState.LISTENING
        self._event_task = self._context.spawn(
            self._consume_events(events), name="recognition-events"
        )
        config = RecognitionConfig(
            continuous=True, interim_results=True, language=self._language
        )
        try:
            await self._recognizer.start(config, self._capturer, events)
        except CaptureError as exc:
            await self._handle_failure(exc.kind, exc.detail)
            return
        logger.debug("Recognition stream started")

    async def _stop_recognition(self) -> None:
        task, self._event_task = self._event_task, None
        self._events = None
        was_recognizing, self._recognizing = self._recognizing, False
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if was_recognizing:
            try:
                await self._recognizer.stop()
            except Exception as exc:
                logger.warning(f"Recognizer stop failed: {exc}")

    async def _consume_events(self, events: asyncio.Queue[RecognitionEvent]) -> None:
        while self._events is events:
            event = await events.get()
            if self._events is not events:
                break
            if isinstance(event, RecognitionResult):
                self._handle_result(event)
            elif isinstance(event, RecognitionError):
                await self._handle_failure(event.kind, event.detail)
            elif isinstance(event, RecognitionEnded):
                logger.debug("Recognition stream ended: %s", event.reason)
                await self._handle_failure("ended", event.reason)

    def _handle_result(self, result: RecognitionResult) -> None:
        text = result.text.strip()
        if not text:
            return
        self._retry_count = 0
        if result.is_final:
            self._transcript = f"{self._transcript} {text}".strip()
            return
        if self.on_interim_activity is not None:
            self.on_interim_activity()

    async def _handle_failure(self, kind: str, detail: Optional[str]) -> None:
        if kind == PERMISSION_DENIED:
            logger.error("Microphone permission denied: %s", detail)
            await self._stop_recognition()
            self._state = CaptureState.IDLE
            message = "Microphone permission denied"
            if self.on_fatal_error is not None:
                self.on_fatal_error(message)
            elif self._context is not None:
                self._context.spawn(self.stop_session(), name="capture-stop")
            return

        await self._stop_recognition()
        if not self.is_active or self._peer_speaking:
            return

        if self._retry_count < self._settings.max_retry_count:
            self._retry_count += 1
            delay = (
                self._settings.restart_delay
                + self._settings.reconnection_interval * self._retry_count
            )
            self._state = CaptureState.RETRY_WAIT
            logger.warning(
                "Recognition %s (%s); retry %d/%d in %.1fs",
                kind,
                detail or "no detail",
                self._retry_count,
                self._settings.max_retry_count,
                delay,
            )
            self._schedule_start(delay, "retry")
            return

        logger.warning("Recognition kept failing; re-acquiring the microphone")
        self._retry_count = 0
        await self._hard_restart()

    async def _hard_restart(self) -> None:
        self.hard_restarts += 1
        self._stop_polling()
        await self._capturer.release()
        self._state = CaptureState.ACQUIRING
        self._schedule_start(self._settings.restart_delay, "reacquire")


__all__ = ["CaptureState", "SpeechCaptureEndpointer"]
