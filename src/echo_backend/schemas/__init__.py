"""Data model and wire schemas."""

from .conversation import (
    AudioSegment,
    ConversationTurn,
    SessionState,
    TextChunk,
    Utterance,
)
from .voice import VoiceCommand, VoiceStatus

__all__ = [
    "AudioSegment",
    "ConversationTurn",
    "SessionState",
    "TextChunk",
    "Utterance",
    "VoiceCommand",
    "VoiceStatus",
]
