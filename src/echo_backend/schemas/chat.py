"""Request schema for the streaming chat completions endpoint."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatStreamRequest(BaseModel):
    """Single-turn chat request: persona prompt plus the user's utterance."""

    model: str
    messages: list[ChatMessage] = Field(min_length=1)
    temperature: float | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None

    @classmethod
    def for_utterance(
        cls,
        utterance: str,
        *,
        model: str,
        persona_prompt: str | None = None,
        temperature: float | None = None,
        presence_penalty: float | None = None,
        frequency_penalty: float | None = None,
    ) -> "ChatStreamRequest":
        messages = [ChatMessage(role="user", content=utterance)]
        if persona_prompt:
            messages.insert(0, ChatMessage(role="system", content=persona_prompt))
        return cls(
            model=model,
            messages=messages,
            temperature=temperature,
            presence_penalty=presence_penalty,
            frequency_penalty=frequency_penalty,
        )

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump(exclude_none=True)
        payload["stream"] = True
        return payload


__all__ = ["ChatMessage", "ChatStreamRequest"]
