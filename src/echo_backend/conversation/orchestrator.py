"""
Conversation orchestrator.

Wires speech capture, the streaming model reply, speech synthesis and audio
playback into one turn-taking loop:

    LISTENING --utterance--> AWAITING --first audio--> SPEAKING
        ^                                                  |
        +------------- playback idle / barge-in -----------+

Each assistant turn runs as a task owned by the session context and carries
a cancellation token. Barge-in fires the token, stops playback and returns to
LISTENING in one synchronous step; everything downstream of the token exits
quietly at its next suspension point.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

from ..audio.interfaces import AudioCapturer, AudioPlayer, SpeechRecognizer
from ..config import CaptureSettings
from ..errors import TransportError
from ..schemas.conversation import (
    AudioSegment,
    ConversationTurn,
    SessionState,
    TextChunk,
    Utterance,
)
from ..schemas.voice import VoiceStatus
from ..services.cancellation import CancellationToken
from ..services.stt.endpointer import SpeechCaptureEndpointer
from ..services.tts.playback import DEFAULT_OVERLAP, AudioPlaybackScheduler
from .session import SessionContext

logger = logging.getLogger(__name__)


class ResponseSegmenter(Protocol):
    async def run(
        self,
        prompt: str,
        on_chunk: Callable[[TextChunk], Awaitable[None]],
        token: Optional[CancellationToken] = None,
    ) -> str: ...


class SpeechSynthesizer(Protocol):
    async def synthesize(self, text: str) -> bytes: ...


TurnCallback = Callable[[ConversationTurn], None]


@dataclass
class _AssistantTurn:
    token: CancellationToken
    message: ConversationTurn
    task: Optional[asyncio.Task[None]] = None
    enqueued: int = 0
    audio_done: bool = False

    def cancel(self) -> None:
        self.token.cancel()


class ConversationOrchestrator:
    """Own one voice session at a time and drive its turns."""

    def __init__(
        self,
        *,
        recognizer: SpeechRecognizer,
        capturer: AudioCapturer,
        player: AudioPlayer,
        segmenter: ResponseSegmenter,
        synthesizer: SpeechSynthesizer,
        capture_settings: Optional[CaptureSettings] = None,
        language: str = "en-US",
        overlap: float = DEFAULT_OVERLAP,
        on_turn_rendered: Optional[TurnCallback] = None,
        on_turn_discarded: Optional[TurnCallback] = None,
        on_error: Optional[Callable[[str], None]] = None,
        on_state_change: Optional[Callable[[SessionState], None]] = None,
    ):
        self._player = player
        self._segmenter = segmenter
        self._synthesizer = synthesizer
        self.language = language
        self.on_turn_rendered = on_turn_rendered
        self.on_turn_discarded = on_turn_discarded
        self.on_error = on_error
        self.on_state_change = on_state_change

        self.endpointer = SpeechCaptureEndpointer(
            recognizer,
            capturer,
            capture_settings,
            on_utterance=self._on_utterance,
            on_interim_activity=self._on_interim_activity,
            on_fatal_error=self._on_fatal_error,
            language=language,
        )
        self.scheduler = AudioPlaybackScheduler(
            player, overlap=overlap, on_idle=self._on_playback_idle
        )

        self._state = SessionState.INACTIVE
        self._context: Optional[SessionContext] = None
        self._turn: Optional[_AssistantTurn] = None
        # Outlives self._turn so a new turn can wait for any interrupted one
        self._last_turn_task: Optional[asyncio.Task[None]] = None
        self._stopping = False

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def context(self) -> Optional[SessionContext]:
        return self._context

    @property
    def is_session_active(self) -> bool:
        return self._context is not None

    @property
    def is_listening(self) -> bool:
        return self._state is SessionState.LISTENING

    @property
    def is_speaking(self) -> bool:
        return self._state is SessionState.SPEAKING

    def describe(self) -> VoiceStatus:
        context = self._context
        return VoiceStatus(
            state=self._state.value,
            is_session_active=self.is_session_active,
            is_listening=self.is_listening,
            is_speaking=self.is_speaking,
            session_id=context.session_id if context else None,
            started_at=context.started_at if context else None,
            turns=len(context.turns) if context else 0,
        )

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    async def start_session(self) -> SessionContext:
        if self._context is not None:
            return self._context

        context = SessionContext(language=self.language)
        self._context = context
        logger.info("Starting voice session %s", context.session_id)
        try:
            await self._player.open()
            self._set_state(SessionState.LISTENING)
            await self.endpointer.start_session(context)
        except Exception:
            logger.error("Failed to start voice session", exc_info=True)
            await self.stop_session()
            raise
        return context

    async def stop_session(self) -> None:
        context = self._context
        if context is None or self._stopping:
            return
        self._stopping = True
        try:
            turn, self._turn = self._turn, None
            if turn is not None:
                turn.cancel()
                turn.message.complete = False
            self.scheduler.stop()
            try:
                await self.endpointer.stop_session()
            finally:
                await context.close()
                await self._player.close()
        finally:
            self._context = None
            self._last_turn_task = None
            self._stopping = False
            self._set_state(SessionState.INACTIVE)
            logger.info("Voice session %s stopped", context.session_id)

    # ------------------------------------------------------------------
    # Capture callbacks
    # ------------------------------------------------------------------
    def _on_utterance(self, utterance: Utterance) -> None:
        context = self._context
        if context is None or not context.active:
            return
        context.turns.append(
            ConversationTurn(role="user", content=utterance.text, complete=True)
        )

        previous = self._turn
        if previous is not None:
            logger.info("New utterance supersedes the turn in progress")
            previous.cancel()
            previous.message.complete = False
            self.scheduler.stop()

        turn = _AssistantTurn(
            token=CancellationToken(f"turn-{len(context.turns)}"),
            message=ConversationTurn(role="assistant"),
        )
        self._turn = turn
        turn.task = context.spawn(
            self._run_turn(turn, utterance, self._last_turn_task),
            name="assistant-turn",
        )
        self._last_turn_task = turn.task

    def _on_interim_activity(self) -> None:
        """Barge-in: silence the assistant as soon as the user speaks over it."""
        if self._state is not SessionState.SPEAKING:
            return
        turn, self._turn = self._turn, None
        if turn is None:
            return
        turn.cancel()
        self.scheduler.stop()
        turn.message.complete = False
        self._set_state(SessionState.LISTENING)
        logger.info("Barge-in: assistant interrupted after %d chars", len(turn.message.content))

        context = self._context
        if context is not None:
            context.turns.append(turn.message)
            context.spawn(self.endpointer.set_peer_speaking(False), name="resume-capture")
        if self.on_turn_rendered is not None:
            self.on_turn_rendered(turn.message)

    def _on_fatal_error(self, message: str) -> None:
        logger.error("Capture failed permanently: %s", message)
        self._report_error(message)
        if self._context is not None:
            self._context.spawn(self.stop_session(), name="fatal-stop")

    # ------------------------------------------------------------------
    # Turn pipeline
    # ------------------------------------------------------------------
    async def _run_turn(
        self,
        turn: _AssistantTurn,
        utterance: Utterance,
        previous: Optional[asyncio.Task[None]],
    ) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})
        if turn.token.cancelled:
            return

        self._set_state(SessionState.AWAITING)
        pending: asyncio.Queue[Optional[tuple[TextChunk, asyncio.Task[bytes]]]] = (
            asyncio.Queue()
        )

        async def on_chunk(chunk: TextChunk) -> None:
            if turn.token.cancelled:
                return
            turn.message.append(chunk.text)
            task = asyncio.create_task(
                self._synthesizer.synthesize(chunk.text),
                name=f"synthesis-{chunk.sequence_index}",
            )
            task.add_done_callback(_retrieve_exception)
            turn.token.add_callback(task.cancel)
            pending.put_nowait((chunk, task))

        applier = asyncio.create_task(
            self._apply_segments(turn, pending), name="segment-applier"
        )
        applier.add_done_callback(
            lambda task: turn.token.cancel()
            if not task.cancelled() and task.exception() is not None
            else None
        )

        try:
            try:
                await self._segmenter.run(utterance.text, on_chunk, turn.token)
            finally:
                pending.put_nowait(None)
            await asyncio.wait({applier})
            if not applier.cancelled() and applier.exception() is not None:
                raise applier.exception()  # type: ignore[misc]
        except TransportError as exc:
            if not applier.done():
                applier.cancel()
                await asyncio.wait({applier})
            await self._discard_turn(turn, exc)
            return
        finally:
            if not applier.done():
                applier.cancel()

        turn.audio_done = True
        if turn.token.cancelled or self._turn is not turn:
            return
        if turn.enqueued == 0 or not self.scheduler.is_playing:
            await self._finish_turn(turn)

    async def _apply_segments(
        self,
        turn: _AssistantTurn,
        pending: asyncio.Queue[Optional[tuple[TextChunk, asyncio.Task[bytes]]]],
    ) -> None:
        """Hand synthesized audio to the scheduler strictly in chunk order."""
        while True:
            item = await pending.get()
            if item is None:
                return
            chunk, task = item
            await asyncio.wait({task})
            if turn.token.cancelled or task.cancelled():
                return
            audio = task.result()
            if not audio:
                continue
            await self.scheduler.enqueue(AudioSegment(chunk.sequence_index, audio))
            turn.enqueued += 1
            if turn.token.cancelled:
                return
            if turn.enqueued == 1:
                self._set_state(SessionState.SPEAKING)
                await self.endpointer.set_peer_speaking(True)

    async def _on_playback_idle(self) -> None:
        turn = self._turn
        if turn is None or not turn.audio_done or turn.token.cancelled:
            return
        await self._finish_turn(turn)

    async def _finish_turn(self, turn: _AssistantTurn) -> None:
        if self._turn is not turn:
            return
        self._turn = None
        turn.message.complete = True
        if self._context is not None:
            self._context.turns.append(turn.message)
        logger.info(
            "Assistant turn complete (%d chars, %d segment(s))",
            len(turn.message.content),
            turn.enqueued,
        )
        self._set_state(SessionState.LISTENING)
        if self.on_turn_rendered is not None and turn.message.content:
            self.on_turn_rendered(turn.message)
        await self.endpointer.set_peer_speaking(False)

    async def _discard_turn(self, turn: _AssistantTurn, exc: TransportError) -> None:
        logger.error(
            "Assistant turn failed (status %s): %s", exc.status_code, exc.detail
        )
        turn.cancel()
        turn.message.complete = False
        if self._turn is turn:
            self._turn = None
            self.scheduler.stop()
            self._set_state(SessionState.LISTENING)
        if self.on_turn_discarded is not None:
            self.on_turn_discarded(turn.message)
        self._report_error(_describe_transport_error(exc))
        await self.endpointer.set_peer_speaking(False)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        logger.debug("Session state %s -> %s", self._state.value, state.value)
        self._state = state
        if self.on_state_change is not None:
            self.on_state_change(state)

    def _report_error(self, message: str) -> None:
        if self.on_error is not None:
            self.on_error(message)


def _retrieve_exception(task: asyncio.Task[bytes]) -> None:
    if not task.cancelled():
        task.exception()


def _describe_transport_error(exc: TransportError) -> str:
    detail: Any = exc.detail
    if isinstance(detail, dict):
        detail = detail.get("error", detail)
    if isinstance(detail, dict):
        detail = detail.get("message", detail)
    return f"Assistant reply failed ({exc.status_code}): {detail}"


__all__ = ["ConversationOrchestrator"]
