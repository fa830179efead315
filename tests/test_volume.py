import numpy as np
import pytest

from echo_backend.services.stt import is_speech, measure_volume


def test_constant_signal_measures_its_amplitude() -> None:
    window = np.full(256, 0.5, dtype=np.float32)
    assert measure_volume(window) == pytest.approx(0.5)


def test_sine_measures_rms() -> None:
    t = np.arange(256)
    window = 0.2 * np.sin(2 * np.pi * 8 * t / 256)
    assert measure_volume(window) == pytest.approx(0.2 / np.sqrt(2), rel=1e-6)


def test_empty_and_silent_windows_are_zero() -> None:
    assert measure_volume(np.array([])) == 0.0
    assert measure_volume(np.zeros(256)) == 0.0


@pytest.mark.parametrize(
    ("level", "expected"),
    [(0.5, True), (0.02, True), (0.01, False), (0.001, False)],
)
def test_speech_threshold(level: float, expected: bool) -> None:
    volume = measure_volume(np.full(256, level))
    assert is_speech(volume, 0.015) is expected
