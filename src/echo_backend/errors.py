"""Error taxonomy shared by the capture, streaming and playback layers."""

from __future__ import annotations

import json
from typing import Any

NO_SPEECH = "no-speech"
AUDIO_CAPTURE = "audio-capture"
PERMISSION_DENIED = "permission-denied"


class CaptureError(Exception):
    """Microphone or recognition failure reported by the capture layer."""

    def __init__(self, kind: str, detail: str | None = None):
        super().__init__(detail or kind)
        self.kind = kind
        self.detail = detail


class TransportError(Exception):
    """Wrap transport or API failures from the model and synthesis endpoints."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


def error_detail_from_body(raw: bytes, empty_message: str) -> Any:
    """Pull the most useful message out of an HTTP error body."""
    if not raw:
        return empty_message
    text = raw.decode("utf-8", errors="ignore")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return text
    if not isinstance(payload, dict):
        return payload
    error = payload.get("error")
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return error or payload.get("detail") or payload


class TurnCancelled(Exception):
    """Raised inside a turn's async chain once its cancellation token fires.

    Callers treat it as a normal, silent termination.
    """


class DecodeError(Exception):
    """A synthesized audio segment could not be decoded."""


__all__ = [
    "AUDIO_CAPTURE",
    "CaptureError",
    "DecodeError",
    "NO_SPEECH",
    "PERMISSION_DENIED",
    "TransportError",
    "TurnCancelled",
    "error_detail_from_body",
]
