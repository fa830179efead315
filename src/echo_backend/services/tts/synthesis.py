import logging
from typing import Optional

import httpx
from fastapi import status

from echo_backend.config import Settings
from echo_backend.errors import TransportError, error_detail_from_body

logger = logging.getLogger(__name__)


class SpeechSynthesisClient:
    """
    Client for the speech synthesis endpoint.

    Posts ``{"text": ...}`` and returns the raw audio bytes (audio/mpeg).
    Uses a singleton httpx.AsyncClient for connection pooling across requests;
    every request is time-limited by the client's timeout.
    """

    # Singleton HTTP client for connection pooling
    _http_client: Optional[httpx.AsyncClient] = None

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = str(settings.tts_url)
        self.timeout = settings.tts_timeout
        self._transport = transport
        self._own_client: Optional[httpx.AsyncClient] = None

    @classmethod
    def get_http_client(cls, timeout: float = 30.0) -> httpx.AsyncClient:
        """Get singleton HTTP client for connection pooling."""
        if cls._http_client is None:
            cls._http_client = httpx.AsyncClient(timeout=timeout)
            logger.info("Created singleton httpx.AsyncClient for TTS")
        return cls._http_client

    @classmethod
    async def close_http_client(cls) -> None:
        """Close the singleton HTTP client. Call on app shutdown."""
        if cls._http_client is not None:
            await cls._http_client.aclose()
            cls._http_client = None
            logger.info("Closed TTS HTTP client")

    def _client(self) -> httpx.AsyncClient:
        if self._transport is None:
            return self.get_http_client(self.timeout)
        if self._own_client is None:
            self._own_client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            )
        return self._own_client

    async def aclose(self) -> None:
        if self._own_client is not None:
            await self._own_client.aclose()
            self._own_client = None

    async def synthesize(self, text: str) -> bytes:
        """
        Synthesize ``text`` and return the encoded audio.

        Raises TransportError on network failures, non-2xx responses, or a
        JSON error body returned in place of audio.
        """
        text = text.strip()
        if not text:
            return b""

        try:
            response = await self._client().post(
                self.url,
                json={"text": text},
                headers={"Accept": "audio/mpeg"},
            )
        except httpx.HTTPError as exc:
            raise TransportError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            raise TransportError(
                response.status_code, _error_detail(response.content)
            )

        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            raise TransportError(
                status.HTTP_502_BAD_GATEWAY,
                _error_detail(response.content),
            )

        audio = response.content
        logger.info(f"Synthesized {len(text)} chars -> {len(audio)} bytes")
        return audio


def _error_detail(raw: bytes):
    return error_detail_from_body(
        raw, "Speech synthesis failed with an empty error response."
    )


__all__ = ["SpeechSynthesisClient"]
