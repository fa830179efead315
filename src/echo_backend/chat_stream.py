"""Streaming chat completions client for the spoken reply."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import aclosing
from typing import Any, AsyncGenerator, Optional

import httpx
from fastapi import status

from .config import Settings
from .errors import TransportError, error_detail_from_body
from .schemas.chat import ChatStreamRequest

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class ChatStreamClient:
    """Post a persona + utterance request and read the reply as it is generated.

    The HTTP client is created lazily on first use and reused for every turn
    of the process; ``aclose()`` releases it.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._settings = settings
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

    @property
    def endpoint(self) -> str:
        return f"{str(self._settings.model_base_url).rstrip('/')}/chat/completions"

    def build_request(self, utterance: str) -> ChatStreamRequest:
        """Return the persona + utterance request configured by settings."""

        return ChatStreamRequest.for_utterance(
            utterance,
            model=self._settings.model,
            persona_prompt=self._settings.persona_prompt,
            temperature=self._settings.temperature,
            presence_penalty=self._settings.presence_penalty,
            frequency_penalty=self._settings.frequency_penalty,
        )

    async def stream_text(
        self, request: ChatStreamRequest
    ) -> AsyncGenerator[str, None]:
        """Yield incremental ``choices[0].delta.content`` fragments.

        Stops at the ``[DONE]`` sentinel. Error payloads and data that is not
        a JSON object raise :class:`TransportError`.
        """

        async with aclosing(self._stream_data(request.to_payload())) as events:
            async for data in events:
                if data.strip() == DONE_SENTINEL:
                    logger.debug("Model stream done signal received")
                    return
                content = _delta_content(_decode_chunk(data))
                if content:
                    yield content

    async def aclose(self) -> None:
        async with self._client_lock:
            client, self._client = self._client, None
        if client is not None:
            await client.aclose()
            logger.debug("Closed model HTTP client")

    async def _http_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self._settings.request_timeout, connect=10.0),
                    limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
                    transport=self._transport,
                )
            return self._client

    async def _stream_data(self, payload: dict[str, Any]) -> AsyncGenerator[str, None]:
        """Open the SSE response and yield the data of each event."""

        client = await self._http_client()
        headers = {
            "Authorization": f"Bearer {self._settings.openai_api_key.get_secret_value()}",
            "Accept": "text/event-stream",
        }
        try:
            async with client.stream(
                "POST", self.endpoint, headers=headers, json=payload
            ) as response:
                if response.status_code >= 400:
                    detail = error_detail_from_body(
                        await response.aread(),
                        "Model endpoint returned an empty error response.",
                    )
                    raise TransportError(response.status_code, detail)

                data_lines: list[str] = []
                async for line in response.aiter_lines():
                    if line:
                        if line.startswith("data:"):
                            data_lines.append(line[5:].lstrip(" "))
                        continue
                    # Blank line terminates one event
                    if data_lines:
                        yield "\n".join(data_lines)
                        data_lines = []
                if data_lines:
                    yield "\n".join(data_lines)
        except httpx.HTTPError as exc:
            raise TransportError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc


def _decode_chunk(data: str) -> dict[str, Any]:
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError as exc:
        raise TransportError(
            status.HTTP_502_BAD_GATEWAY,
            f"Malformed stream data: {exc.msg} at column {exc.colno}",
        ) from exc
    if not isinstance(chunk, dict):
        raise TransportError(
            status.HTTP_502_BAD_GATEWAY, "Malformed stream data: expected an object"
        )
    if chunk.get("error"):
        raise TransportError(status.HTTP_502_BAD_GATEWAY, chunk["error"])
    return chunk


def _delta_content(chunk: dict[str, Any]) -> str:
    choices = chunk.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    delta = choices[0].get("delta")
    content = delta.get("content") if isinstance(delta, dict) else None
    return content if isinstance(content, str) else ""


__all__ = ["ChatStreamClient", "DONE_SENTINEL"]
