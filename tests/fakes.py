"""Stub collaborators for the capture, synthesis and playback layers."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Optional

import numpy as np

from echo_backend.audio.interfaces import (
    DecodedAudio,
    RecognitionConfig,
    RecognitionEvent,
)
from echo_backend.errors import CaptureError, DecodeError, TransportError
from echo_backend.schemas.conversation import TextChunk
from echo_backend.services.cancellation import CancellationToken


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


class FakeCapturer:
    def __init__(self, window_size: int = 256) -> None:
        self.window_size = window_size
        self.level = 0.0
        self.acquired = False
        self.acquire_calls = 0
        self.release_calls = 0
        self.acquire_error: Optional[CaptureError] = None
        self.on_release: Optional[Callable[[], None]] = None
        self.subscribers: list[Callable[[bytes], None]] = []

    @property
    def is_acquired(self) -> bool:
        return self.acquired

    async def acquire(self) -> None:
        self.acquire_calls += 1
        if self.acquire_error is not None:
            raise self.acquire_error
        self.acquired = True

    async def release(self) -> None:
        self.release_calls += 1
        self.acquired = False
        if self.on_release is not None:
            self.on_release()

    def latest_window(self) -> np.ndarray:
        return np.full(self.window_size, self.level, dtype=np.float32)

    def subscribe(self, callback: Callable[[bytes], None]) -> Callable[[], None]:
        self.subscribers.append(callback)
        return lambda: self.subscribers.remove(callback)


class FakeRecognizer:
    def __init__(self) -> None:
        self.start_calls = 0
        self.stop_calls = 0
        self.running = False
        self.config: Optional[RecognitionConfig] = None
        self.events: Optional[asyncio.Queue[RecognitionEvent]] = None
        self.on_start: Optional[Callable[["FakeRecognizer"], None]] = None
        self.stop_gate: Optional[asyncio.Event] = None

    async def start(self, config, capturer, events) -> None:
        self.start_calls += 1
        self.config = config
        self.events = events
        self.running = True
        if self.on_start is not None:
            self.on_start(self)

    async def stop(self) -> None:
        self.stop_calls += 1
        if self.stop_gate is not None:
            await self.stop_gate.wait()
        self.running = False

    def emit(self, event: RecognitionEvent) -> None:
        assert self.events is not None, "recognizer was never started"
        self.events.put_nowait(event)


class FakeHandle:
    def __init__(self, player: "FakePlayer", audio: DecodedAudio, start: float) -> None:
        self._player = player
        self.audio = audio
        self.start = start
        self.stopped_at: Optional[float] = None

    @property
    def end(self) -> float:
        end = self.start + self.audio.duration
        if self.stopped_at is not None:
            end = min(end, self.stopped_at)
        return end

    @property
    def is_active(self) -> bool:
        return self._player.now < self.end

    def stop(self, when: Optional[float] = None) -> None:
        at = self._player.now if when is None else when
        if self.stopped_at is None or at < self.stopped_at:
            self.stopped_at = at


class FakePlayer:
    """Player whose clock only moves when the test sets ``now``."""

    def __init__(self, default_duration: float = 1.0) -> None:
        self.now = 0.0
        self.default_duration = default_duration
        self.durations: dict[bytes, float] = {}
        self.handles: list[FakeHandle] = []
        self.opened = False
        self.close_calls = 0

    @property
    def current_time(self) -> float:
        return self.now

    async def open(self) -> None:
        self.opened = True

    async def close(self) -> None:
        self.opened = False
        self.close_calls += 1

    async def decode(self, data: bytes) -> DecodedAudio:
        await asyncio.sleep(0)
        if not data or data.startswith(b"bad"):
            raise DecodeError("not audio")
        return DecodedAudio(
            duration=self.durations.get(data, self.default_duration), samples=data
        )

    def play(self, audio: DecodedAudio, start_time: float) -> FakeHandle:
        handle = FakeHandle(self, audio, start_time)
        self.handles.append(handle)
        return handle

    @property
    def played(self) -> list[Any]:
        return [handle.audio.samples for handle in self.handles]


class ScriptedSegmenter:
    """Emits fixed chunks, optionally failing or holding the stream open."""

    def __init__(
        self,
        chunks: list[str],
        *,
        error: Optional[Exception] = None,
        hold: Optional[asyncio.Event] = None,
        gap: float = 0.0,
    ) -> None:
        self.chunks = chunks
        self.gap = gap
        self.error = error
        self.hold = hold
        self.prompts: list[str] = []

    async def run(self, prompt, on_chunk, token: Optional[CancellationToken] = None) -> str:
        self.prompts.append(prompt)
        emitted: list[str] = []
        for index, text in enumerate(self.chunks):
            if token is not None and token.cancelled:
                return " ".join(emitted)
            await on_chunk(TextChunk(sequence_index=index, text=text))
            emitted.append(text)
            await asyncio.sleep(self.gap)
        if self.error is not None:
            raise self.error
        if self.hold is not None:
            waiters = [asyncio.create_task(self.hold.wait())]
            if token is not None:
                waiters.append(asyncio.create_task(token.wait()))
            try:
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for waiter in waiters:
                    waiter.cancel()
        return " ".join(emitted)


class FakeSynthesizer:
    def __init__(
        self,
        *,
        delays: Optional[dict[str, float]] = None,
        failures: Optional[set[str]] = None,
        silent: Optional[set[str]] = None,
    ) -> None:
        self.delays = delays or {}
        self.failures = failures or set()
        self.silent = silent or set()
        self.requests: list[str] = []

    async def synthesize(self, text: str) -> bytes:
        self.requests.append(text)
        await asyncio.sleep(self.delays.get(text, 0))
        if text in self.failures:
            raise TransportError(500, {"error": "synthesis unavailable"})
        if text in self.silent:
            return b""
        return f"audio:{text}".encode()
