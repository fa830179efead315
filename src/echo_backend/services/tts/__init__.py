"""
Speech output services.

This package contains the modules that turn a streaming model reply into
audible speech:

- text_segmenter: Splits the streaming reply into speakable chunks
- synthesis: HTTP client for the speech synthesis endpoint
- playback: Gapless scheduling of synthesized segments

Architecture Overview:

    ┌─────────────┐     ┌─────────────────────────┐     ┌──────────────────┐
    │ Model Stream│────▶│ ResponseStreamSegmenter │────▶│ synthesis (N in  │
    └─────────────┘     └─────────────────────────┘     │  parallel)       │
                                                        └──────────────────┘
                                                                 │ in sequence order
                                                                 ▼
                                                      ┌──────────────────────┐
                                                      │AudioPlaybackScheduler│
                                                      └──────────────────────┘

Synthesis requests start as soon as each chunk is emitted, but results are
applied to the scheduler strictly in ``sequence_index`` order.
"""

from .playback import AudioPlaybackScheduler
from .synthesis import SpeechSynthesisClient
from .text_segmenter import ResponseStreamSegmenter, TextSegmenter

__all__ = [
    "AudioPlaybackScheduler",
    "ResponseStreamSegmenter",
    "SpeechSynthesisClient",
    "TextSegmenter",
]
