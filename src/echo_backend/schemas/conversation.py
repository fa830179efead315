"""Runtime data model for a spoken conversation session."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional


class SessionState(str, Enum):
    """Lifecycle of a voice session; exactly one is active at a time."""

    INACTIVE = "inactive"
    LISTENING = "listening"
    AWAITING = "awaiting"
    SPEAKING = "speaking"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Utterance:
    """One finalized block of user speech."""

    text: str
    is_final: bool = True
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class ConversationTurn:
    """A user or assistant message; assistant content grows as chunks arrive."""

    role: Literal["user", "assistant"]
    content: str = ""
    complete: bool = False
    created_at: datetime = field(default_factory=_utcnow)

    def append(self, text: str) -> None:
        if not text:
            return
        self.content = f"{self.content} {text}" if self.content else text

    def asdict(self) -> dict[str, object]:
        return {
            "role": self.role,
            "content": self.content,
            "complete": self.complete,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class TextChunk:
    """A normalized span of assistant text, ordered by ``sequence_index``."""

    sequence_index: int
    text: str


@dataclass
class AudioSegment:
    """Synthesized audio for one chunk, owned by the playback scheduler."""

    sequence_index: int
    raw_bytes: bytes
    decoded_duration: Optional[float] = None
    scheduled_start: Optional[float] = None


__all__ = [
    "AudioSegment",
    "ConversationTurn",
    "SessionState",
    "TextChunk",
    "Utterance",
]
