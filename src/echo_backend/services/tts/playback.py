"""
Gapless playback of synthesized segments.

Segments are decoded and scheduled one after another against the player's
clock. Each new source starts at ``max(now, anchor)`` and the anchor advances
to the end of that source minus a small overlap, so consecutive sentences
run into each other without an audible gap.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from ...audio.interfaces import AudioPlayer, PlaybackHandle
from ...errors import DecodeError
from ...schemas.conversation import AudioSegment

logger = logging.getLogger(__name__)

DEFAULT_OVERLAP = 0.05

IdleCallback = Callable[[], Union[None, Awaitable[None]]]


class AudioPlaybackScheduler:
    """Queue of audio segments played back-to-back on one output context."""

    def __init__(
        self,
        player: AudioPlayer,
        *,
        overlap: float = DEFAULT_OVERLAP,
        on_idle: Optional[IdleCallback] = None,
        poll_interval: float = 0.02,
    ):
        self._player = player
        self.overlap = overlap
        self.on_idle = on_idle
        self._poll_interval = poll_interval

        self._queue: asyncio.Queue[AudioSegment] = asyncio.Queue()
        self._worker: Optional[asyncio.Task[None]] = None
        self._generation = 0
        self._playing = False
        self._anchor = 0.0
        self._last_end = 0.0
        self._current: Optional[PlaybackHandle] = None
        self._handles: list[PlaybackHandle] = []

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def anchor(self) -> float:
        return self._anchor

    async def enqueue(self, segment: AudioSegment) -> None:
        self._playing = True
        await self._queue.put(segment)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(
                self._run(self._generation), name="audio-playback"
            )

    def stop(self) -> None:
        """Silence everything scheduled and forget queued segments."""
        self._generation += 1
        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()

        for handle in self._handles:
            if handle.is_active:
                handle.stop()
        self._handles.clear()
        self._current = None

        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            dropped += 1

        now = self._player.current_time
        self._anchor = now
        self._last_end = now
        was_playing, self._playing = self._playing, False
        if was_playing:
            logger.info("Playback stopped (%d queued segment(s) dropped)", dropped)

    async def _run(self, generation: int) -> None:
        while True:
            segment = await self._next_segment()
            if generation != self._generation:
                return
            if segment is None:
                break
            await self._schedule(segment, generation)

        self._worker = None
        self._playing = False
        self._current = None
        self._handles.clear()
        logger.debug("Playback idle")
        if self.on_idle is not None:
            result = self.on_idle()
            if inspect.isawaitable(result):
                await result

    async def _next_segment(self) -> Optional[AudioSegment]:
        """Next queued segment, or None once the last scheduled one has ended."""
        while True:
            if not self._queue.empty():
                return self._queue.get_nowait()
            remaining = self._last_end - self._player.current_time
            if remaining <= 0:
                return None
            try:
                return await asyncio.wait_for(
                    self._queue.get(), timeout=min(remaining, self._poll_interval)
                )
            except asyncio.TimeoutError:
                continue

    async def _schedule(self, segment: AudioSegment, generation: int) -> None:
        try:
            decoded = await self._player.decode(segment.raw_bytes)
        except DecodeError as exc:
            logger.warning(
                "Skipping segment %d: could not decode audio (%s)",
                segment.sequence_index,
                exc,
            )
            return
        if generation != self._generation:
            return

        start = max(self._player.current_time, self._anchor)
        handle = self._player.play(decoded, start)
        previous, self._current = self._current, handle
        if previous is not None and previous.is_active:
            previous.stop(start)

        segment.decoded_duration = decoded.duration
        segment.scheduled_start = start
        self._anchor = start + decoded.duration - self.overlap
        self._last_end = start + decoded.duration
        self._handles = [h for h in self._handles if h.is_active]
        self._handles.append(handle)
        logger.debug(
            "Segment %d scheduled at %.3fs (%.3fs)",
            segment.sequence_index,
            start,
            decoded.duration,
        )


__all__ = ["AudioPlaybackScheduler", "DEFAULT_OVERLAP"]
