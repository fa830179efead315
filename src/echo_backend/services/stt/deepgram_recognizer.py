"""
Deepgram streaming recognizer using the synchronous SDK pattern with threading.

The SDK listens on a worker thread; every callback hands its event to the
asyncio queue of the current recognition stream through
``loop.call_soon_threadsafe`` so the endpointer only ever sees events on the
event loop.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Optional

from deepgram import DeepgramClient
from deepgram.core.events import EventType

from ...audio.interfaces import (
    AudioCapturer,
    RecognitionConfig,
    RecognitionEnded,
    RecognitionError,
    RecognitionEvent,
    RecognitionResult,
)
from ...errors import AUDIO_CAPTURE, CaptureError

logger = logging.getLogger(__name__)

NETWORK_ERROR = "network"


class DeepgramRecognizer:
    """Continuous recognition backed by a Deepgram Flux websocket."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "flux-general-en",
        sample_rate: int = 16000,
        eot_threshold: float = 0.7,
        eot_timeout_ms: int = 5000,
        connect_timeout: float = 10.0,
    ):
        if not api_key:
            raise ValueError("DEEPGRAM_API_KEY is not set")
        self.model = model
        self.sample_rate = sample_rate
        self.eot_threshold = eot_threshold
        self.eot_timeout_ms = eot_timeout_ms
        self.connect_timeout = connect_timeout

        self._client = DeepgramClient(api_key=api_key)
        self._context_manager: Any = None
        self._socket: Any = None
        self._ready = threading.Event()
        self._running = False
        self._listening_thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._events: Optional[asyncio.Queue[RecognitionEvent]] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    async def start(
        self,
        config: RecognitionConfig,
        capturer: AudioCapturer,
        events: "asyncio.Queue[RecognitionEvent]",
    ) -> None:
        if self._running:
            await self.stop()
        self._loop = asyncio.get_running_loop()
        self._events = events
        if not config.language.lower().startswith("en"):
            logger.warning(
                "Deepgram model %s is English-only; language %s ignored",
                self.model,
                config.language,
            )

        await asyncio.to_thread(self._connect)
        self._unsubscribe = capturer.subscribe(self._send_audio)

    def _connect(self) -> None:
        params = {
            "model": self.model,
            "encoding": "linear16",
            "sample_rate": str(self.sample_rate),
            "eot_threshold": str(self.eot_threshold),
            "eot_timeout_ms": str(self.eot_timeout_ms),
        }
        logger.info(
            "Connecting to Deepgram (%s, eot_threshold=%s, eot_timeout_ms=%s)",
            self.model,
            self.eot_threshold,
            self.eot_timeout_ms,
        )
        try:
            self._context_manager = self._client.listen.v2.connect(**params)
            self._socket = self._context_manager.__enter__()
            self._socket.on(EventType.OPEN, self._on_open)
            self._socket.on(EventType.MESSAGE, self._on_message)
            self._socket.on(EventType.ERROR, self._on_error)
            self._socket.on(EventType.CLOSE, self._on_close)

            self._running = True
            self._listening_thread = threading.Thread(
                target=self._listen_loop, name="deepgram-listen", daemon=True
            )
            self._listening_thread.start()

            if not self._ready.wait(timeout=self.connect_timeout):
                raise RuntimeError("Timed out waiting for Deepgram connection")
        except Exception as exc:
            logger.error(f"Failed to connect to Deepgram: {exc}", exc_info=True)
            self._close()
            raise CaptureError(AUDIO_CAPTURE, str(exc)) from exc
        logger.info("Deepgram recognition ready")

    def _listen_loop(self) -> None:
        try:
            self._socket.start_listening()
        except Exception as exc:
            if self._running:
                logger.error(f"Deepgram listen error: {exc}")
                self._publish(RecognitionError(NETWORK_ERROR, str(exc)))

    def _publish(self, event: RecognitionEvent) -> None:
        loop, events = self._loop, self._events
        if loop is None or events is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(events.put_nowait, event)

    def _on_open(self, _: Any) -> None:
        self._ready.set()

    def _on_message(self, message: Any) -> None:
        event = getattr(message, "event", None)
        if event == "StartOfTurn":
            logger.debug("Deepgram StartOfTurn")
            return
        transcript = getattr(message, "transcript", None)
        if not transcript:
            return
        is_final = event == "EndOfTurn"
        logger.debug("Deepgram transcript (final=%s): %s", is_final, transcript)
        self._publish(RecognitionResult(text=transcript, is_final=is_final))

    def _on_error(self, error: Any) -> None:
        logger.error(f"Deepgram error: {error}")
        self._publish(RecognitionError(NETWORK_ERROR, str(error)))

    def _on_close(self, _: Any) -> None:
        self._ready.clear()
        if self._running:
            logger.info("Deepgram connection closed by server")
            self._publish(RecognitionEnded("closed"))

    def _send_audio(self, data: bytes) -> None:
        socket = self._socket
        if socket is None or not self._ready.is_set():
            return
        try:
            socket.send_media(data)
        except Exception as exc:
            logger.error(f"Error sending audio to Deepgram: {exc}")

    async def stop(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
        self._events = None
        await asyncio.to_thread(self._close)

    def _close(self) -> None:
        self._running = False
        self._ready.clear()
        context_manager, self._context_manager = self._context_manager, None
        self._socket = None
        if context_manager is None:
            return
        try:
            context_manager.__exit__(None, None, None)
        except Exception as exc:
            logger.warning(f"Error closing Deepgram connection: {exc}")
        logger.info("Deepgram recognition closed")


__all__ = ["DeepgramRecognizer", "NETWORK_ERROR"]
