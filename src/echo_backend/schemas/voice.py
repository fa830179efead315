"""Wire schemas for the voice WebSocket and status endpoint."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class VoiceCommand(BaseModel):
    """Message sent by a UI client over the voice WebSocket."""

    type: Literal["start_session", "stop_session", "ping"]


class VoiceStatus(BaseModel):
    """State accessors exposed to the host UI."""

    state: str = Field(description="Current session state.")
    is_session_active: bool
    is_listening: bool
    is_speaking: bool
    session_id: str | None = None
    started_at: datetime | None = None
    turns: int = Field(default=0, ge=0)


__all__ = ["VoiceCommand", "VoiceStatus"]
