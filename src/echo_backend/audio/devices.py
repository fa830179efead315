"""
Local audio devices backed by PortAudio (sounddevice) and pydub.

PortAudio invokes the stream callbacks on its own thread. The capturer keeps
the latest analysis window behind a lock; the player mixes scheduled sources
inside its output callback, also behind a lock. Everything else runs on the
event loop.
"""

from __future__ import annotations

import asyncio
import io
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
import sounddevice as sd
from pydub import AudioSegment as PydubSegment
from pydub.exceptions import CouldntDecodeError

from ..errors import AUDIO_CAPTURE, PERMISSION_DENIED, CaptureError, DecodeError
from .interfaces import DecodedAudio

logger = logging.getLogger(__name__)


class SounddeviceCapturer:
    """Microphone capture producing 16-bit mono PCM blocks."""

    def __init__(
        self,
        sample_rate: int = 16000,
        window_size: int = 256,
        block_size: int = 1600,
        device: Optional[str] = None,
    ):
        self.sample_rate = sample_rate
        self.window_size = window_size
        self.block_size = block_size
        self.device = device
        self._stream: Optional[sd.InputStream] = None
        self._lock = threading.Lock()
        self._window = np.zeros(window_size, dtype=np.float32)
        self._subscribers: list[Callable[[bytes], None]] = []

    @property
    def is_acquired(self) -> bool:
        return self._stream is not None

    async def acquire(self) -> None:
        if self._stream is not None:
            return
        self._stream = await asyncio.to_thread(self._open_stream)
        logger.info("Microphone acquired (%d Hz)", self.sample_rate)

    def _open_stream(self) -> sd.InputStream:
        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="int16",
                blocksize=self.block_size,
                device=self.device,
                callback=self._on_audio,
            )
            stream.start()
        except PermissionError as exc:
            raise CaptureError(PERMISSION_DENIED, str(exc)) from exc
        except sd.PortAudioError as exc:
            raise CaptureError(AUDIO_CAPTURE, str(exc)) from exc
        return stream

    def _on_audio(self, indata, frames, time_info, status) -> None:
        if status:
            logger.debug("Input stream status: %s", status)
        samples = indata[:, 0].copy()
        normalized = samples.astype(np.float32) / 32768.0
        with self._lock:
            self._window = np.concatenate((self._window, normalized))[-self.window_size:]
            subscribers = list(self._subscribers)
        data = samples.tobytes()
        for callback in subscribers:
            try:
                callback(data)
            except Exception as exc:
                logger.error(f"Audio subscriber failed: {exc}")

    def latest_window(self) -> np.ndarray:
        with self._lock:
            return self._window.copy()

    def subscribe(self, callback: Callable[[bytes], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    async def release(self) -> None:
        stream, self._stream = self._stream, None
        with self._lock:
            self._subscribers.clear()
            self._window = np.zeros(self.window_size, dtype=np.float32)
        if stream is None:
            return
        try:
            await asyncio.to_thread(_close_stream, stream)
        finally:
            logger.info("Microphone released")


def _close_stream(stream: sd.StreamBase) -> None:
    try:
        stream.stop()
    finally:
        stream.close()


@dataclass(eq=False)
class _Source:
    samples: np.ndarray
    start_frame: int
    stop_frame: Optional[int] = None

    @property
    def end_frame(self) -> int:
        end = self.start_frame + len(self.samples)
        if self.stop_frame is not None:
            end = min(end, self.stop_frame)
        return end


class SounddevicePlayback:
    """Handle on one source scheduled by :class:`SounddevicePlayer`."""

    def __init__(self, player: "SounddevicePlayer", source: _Source):
        self._player = player
        self._source = source

    @property
    def is_active(self) -> bool:
        return self._player._is_source_active(self._source)

    def stop(self, when: Optional[float] = None) -> None:
        self._player._stop_source(self._source, when)


class SounddevicePlayer:
    """
    Output context that plays decoded sources at absolute clock times.

    The clock is the number of frames rendered by the output stream, so
    scheduling is sample-accurate relative to what has actually been played.
    """

    def __init__(self, sample_rate: int = 44100, device: Optional[str] = None):
        self.sample_rate = sample_rate
        self.device = device
        self._stream: Optional[sd.OutputStream] = None
        self._lock = threading.Lock()
        self._sources: list[_Source] = []
        self._frames_rendered = 0

    @property
    def current_time(self) -> float:
        with self._lock:
            return self._frames_rendered / self.sample_rate

    async def open(self) -> None:
        if self._stream is not None:
            return
        self._stream = await asyncio.to_thread(self._open_stream)
        logger.info("Audio output opened (%d Hz)", self.sample_rate)

    def _open_stream(self) -> sd.OutputStream:
        stream = sd.OutputStream(
            samplerate=self.sample_rate,
            channels=1,
            dtype="float32",
            device=self.device,
            callback=self._render,
        )
        stream.start()
        return stream

    async def close(self) -> None:
        stream, self._stream = self._stream, None
        with self._lock:
            self._sources.clear()
        if stream is not None:
            await asyncio.to_thread(_close_stream, stream)
            logger.info("Audio output closed")

    async def decode(self, data: bytes) -> DecodedAudio:
        return await asyncio.to_thread(self._decode, data)

    def _decode(self, data: bytes) -> DecodedAudio:
        if not data:
            raise DecodeError("empty audio payload")
        try:
            segment = PydubSegment.from_file(io.BytesIO(data), format="mp3")
        except (CouldntDecodeError, IndexError, OSError) as exc:
            raise DecodeError(str(exc)) from exc
        segment = segment.set_channels(1).set_frame_rate(self.sample_rate)
        scale = float(1 << (8 * segment.sample_width - 1))
        samples = np.array(segment.get_array_of_samples(), dtype=np.float32) / scale
        return DecodedAudio(
            duration=len(samples) / self.sample_rate,
            samples=samples,
            sample_rate=self.sample_rate,
        )

    def play(self, audio: DecodedAudio, start_time: float) -> SounddevicePlayback:
        source = _Source(
            samples=np.asarray(audio.samples, dtype=np.float32),
            start_frame=int(round(start_time * self.sample_rate)),
        )
        with self._lock:
            self._sources.append(source)
        return SounddevicePlayback(self, source)

    def _stop_source(self, source: _Source, when: Optional[float]) -> None:
        with self._lock:
            frame = (
                self._frames_rendered
                if when is None
                else max(self._frames_rendered, int(round(when * self.sample_rate)))
            )
            if source.stop_frame is None or frame < source.stop_frame:
                source.stop_frame = frame

    def _is_source_active(self, source: _Source) -> bool:
        with self._lock:
            return source in self._sources and source.end_frame > self._frames_rendered

    def _render(self, outdata, frames, time_info, status) -> None:
        if status:
            logger.debug("Output stream status: %s", status)
        mix = np.zeros(frames, dtype=np.float32)
        with self._lock:
            block_start = self._frames_rendered
            block_end = block_start + frames
            for source in self._sources:
                lo = max(block_start, source.start_frame)
                hi = min(block_end, source.end_frame)
                if hi > lo:
                    mix[lo - block_start:hi - block_start] += source.samples[
                        lo - source.start_frame:hi - source.start_frame
                    ]
            self._sources = [s for s in self._sources if s.end_frame > block_end]
            self._frames_rendered = block_end
        np.clip(mix, -1.0, 1.0, out=mix)
        outdata[:, 0] = mix


__all__ = ["SounddeviceCapturer", "SounddevicePlayback", "SounddevicePlayer"]
