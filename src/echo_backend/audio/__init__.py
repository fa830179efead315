"""Audio capability interfaces.

The PortAudio-backed implementations live in :mod:`echo_backend.audio.devices`
and are imported by the app factory only, so the rest of the package (and the
test-suite) does not need a sound device.
"""

from .interfaces import (
    AudioCapturer,
    AudioPlayer,
    DecodedAudio,
    PlaybackHandle,
    RecognitionConfig,
    RecognitionEnded,
    RecognitionError,
    RecognitionEvent,
    RecognitionResult,
    SpeechRecognizer,
)

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
