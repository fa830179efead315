"""Volume measurement for silence-based endpointing."""

from __future__ import annotations

import numpy as np


def measure_volume(window: np.ndarray) -> float:
    """
    Return the RMS level of ``window`` computed in the frequency domain.

    The magnitude spectrum of the window is averaged in power and normalized
    by the window length (Parseval), which makes the result equal to the
    time-domain RMS of float samples in [-1, 1].
    """
    samples = np.asarray(window, dtype=np.float64).ravel()
    if samples.size == 0:
        return 0.0
    spectrum = np.fft.fft(samples)
    power = np.mean(np.abs(spectrum) ** 2)
    return float(np.sqrt(power / samples.size))


def is_speech(volume: float, threshold: float) -> bool:
    return volume > threshold


__all__ = ["is_speech", "measure_volume"]
