from __future__ import annotations

import asyncio

import pytest

from echo_backend.schemas.conversation import AudioSegment
from echo_backend.services.tts import AudioPlaybackScheduler
from fakes import FakePlayer, wait_for

pytestmark = pytest.mark.anyio


class IdleCounter:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self) -> None:
        self.calls += 1


def make_scheduler(player: FakePlayer) -> tuple[AudioPlaybackScheduler, IdleCounter]:
    idle = IdleCounter()
    return AudioPlaybackScheduler(player, overlap=0.05, on_idle=idle, poll_interval=0.005), idle


async def test_segments_are_scheduled_back_to_back_with_overlap() -> None:
    player = FakePlayer()
    player.durations = {b"one": 1.0, b"two": 2.0, b"three": 0.5}
    scheduler, idle = make_scheduler(player)
    segments = [AudioSegment(i, data) for i, data in enumerate([b"one", b"two", b"three"])]

    for segment in segments:
        await scheduler.enqueue(segment)
    await wait_for(lambda: len(player.handles) == 3)

    starts = [segment.scheduled_start for segment in segments]
    assert starts == pytest.approx([0.0, 0.95, 2.9])
    assert starts == sorted(starts)
    for current, following in zip(segments, segments[1:]):
        end = current.scheduled_start + current.decoded_duration
        assert end - following.scheduled_start == pytest.approx(0.05)
    assert scheduler.anchor == pytest.approx(3.35)
    assert player.played == [b"one", b"two", b"three"]

    # The previous source is cut where the next one starts
    assert player.handles[0].stopped_at == pytest.approx(0.95)
    assert player.handles[1].stopped_at == pytest.approx(2.9)
    assert scheduler.is_playing
    assert idle.calls == 0


async def test_idle_fires_once_the_last_segment_has_ended() -> None:
    player = FakePlayer()
    scheduler, idle = make_scheduler(player)

    await scheduler.enqueue(AudioSegment(0, b"one"))
    await wait_for(lambda: len(player.handles) == 1)
    await asyncio.sleep(0.02)
    assert scheduler.is_playing

    player.now = 1.5
    await wait_for(lambda: idle.calls == 1)
    assert not scheduler.is_playing


async def test_late_segment_starts_at_the_current_clock() -> None:
    player = FakePlayer()
    scheduler, idle = make_scheduler(player)

    await scheduler.enqueue(AudioSegment(0, b"one"))
    await wait_for(lambda: len(player.handles) == 1)
    player.now = 3.0
    await wait_for(lambda: idle.calls == 1)

    late = AudioSegment(1, b"two")
    await scheduler.enqueue(late)
    await wait_for(lambda: len(player.handles) == 2)

    assert late.scheduled_start == pytest.approx(3.0)
    assert scheduler.is_playing


async def test_stop_silences_sources_and_drops_the_queue() -> None:
    player = FakePlayer()
    scheduler, idle = make_scheduler(player)

    for index in range(3):
        await scheduler.enqueue(AudioSegment(index, f"seg{index}".encode()))
    await wait_for(lambda: len(player.handles) >= 1)
    player.now = 0.4

    scheduler.stop()

    assert not scheduler.is_playing
    assert scheduler.anchor == pytest.approx(0.4)
    assert all(not handle.is_active for handle in player.handles)

    await asyncio.sleep(0.05)
    assert idle.calls == 0
    scheduled = len(player.handles)
    assert scheduled <= 3

    # The scheduler is reusable after a stop
    await scheduler.enqueue(AudioSegment(0, b"again"))
    await wait_for(lambda: len(player.handles) == scheduled + 1)
    assert player.handles[-1].start == pytest.approx(0.4)


async def test_undecodable_segments_are_skipped() -> None:
    player = FakePlayer()
    scheduler, idle = make_scheduler(player)
    bad = AudioSegment(0, b"bad-bytes")
    good = AudioSegment(1, b"good")

    await scheduler.enqueue(bad)
    await scheduler.enqueue(good)
    await wait_for(lambda: len(player.handles) == 1)

    assert bad.scheduled_start is None
    assert good.scheduled_start == pytest.approx(0.0)
    assert player.played == [b"good"]
