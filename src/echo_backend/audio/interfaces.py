"""Capability interfaces for the microphone, recognizer and speaker.

Components receive these through their constructors so hosts can plug in
real devices and tests can plug in doubles.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Union

import numpy as np


@dataclass(frozen=True)
class RecognitionConfig:
    continuous: bool = True
    interim_results: bool = True
    language: str = "en-US"


@dataclass(frozen=True)
class RecognitionResult:
    text: str
    is_final: bool


@dataclass(frozen=True)
class RecognitionError:
    kind: str
    detail: Optional[str] = None


@dataclass(frozen=True)
class RecognitionEnded:
    reason: Optional[str] = None


RecognitionEvent = Union[RecognitionResult, RecognitionError, RecognitionEnded]


@dataclass
class DecodedAudio:
    """Decoded PCM ready to be scheduled on an :class:`AudioPlayer`."""

    duration: float
    samples: Any = None
    sample_rate: int = 0


class AudioCapturer(Protocol):
    """Exclusive handle on the microphone."""

    @property
    def is_acquired(self) -> bool: ...

    async def acquire(self) -> None:
        """Open the device; raises CaptureError when it cannot."""

    async def release(self) -> None: ...

    def latest_window(self) -> np.ndarray:
        """Most recent analysis window as float samples in [-1, 1]."""

    def subscribe(self, callback: Callable[[bytes], None]) -> Callable[[], None]:
        """Receive raw PCM blocks; returns an unsubscribe function."""


class SpeechRecognizer(Protocol):
    """Continuous speech recognition service."""

    async def start(
        self,
        config: RecognitionConfig,
        capturer: AudioCapturer,
        events: "asyncio.Queue[RecognitionEvent]",
    ) -> None:
        """Begin recognition, pushing results, errors and end-of-stream to ``events``."""

    async def stop(self) -> None: ...


class PlaybackHandle(Protocol):
    """A scheduled audio source."""

    @property
    def is_active(self) -> bool: ...

    def stop(self, when: Optional[float] = None) -> None:
        """Stop at audio-clock time ``when`` (immediately when None)."""


class AudioPlayer(Protocol):
    """Audio output context with its own clock, in seconds."""

    @property
    def current_time(self) -> float: ...

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def decode(self, data: bytes) -> DecodedAudio:
        """Decode encoded audio; raises DecodeError on failure."""

    def play(self, audio: DecodedAudio, start_time: float) -> PlaybackHandle: ...


__all__ = [
    "AudioCapturer",
    "AudioPlayer",
    "DecodedAudio",
    "PlaybackHandle",
    "RecognitionConfig",
    "RecognitionEnded",
    "RecognitionError",
    "RecognitionEvent",
    "RecognitionResult",
    "SpeechRecognizer",
]
