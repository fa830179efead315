"""Speech capture: volume endpointing over a continuous recognizer."""

from .endpointer import CaptureState, SpeechCaptureEndpointer
from .volume import is_speech, measure_volume

__all__ = ["CaptureState", "SpeechCaptureEndpointer", "is_speech", "measure_volume"]
