from __future__ import annotations

import json

import httpx
import pytest
from pydantic import SecretStr

from echo_backend.config import Settings
from echo_backend.errors import TransportError
from echo_backend.services.tts import SpeechSynthesisClient

pytestmark = pytest.mark.anyio


def make_client(handler) -> SpeechSynthesisClient:
    settings = Settings(openai_api_key=SecretStr("test"))
    return SpeechSynthesisClient(settings, transport=httpx.MockTransport(handler))


async def test_synthesize_posts_text_and_returns_audio() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=b"ID3audio", headers={"content-type": "audio/mpeg"})

    client = make_client(handler)
    try:
        audio = await client.synthesize("  Hello there.  ")
    finally:
        await client.aclose()

    assert audio == b"ID3audio"
    assert seen["url"] == "http://localhost:3001/tts"
    assert seen["body"] == {"text": "Hello there."}


async def test_blank_text_skips_the_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not run
        raise AssertionError("no request expected")

    client = make_client(handler)
    assert await client.synthesize("   ") == b""
    await client.aclose()


async def test_error_status_raises_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "voice model loading"})

    client = make_client(handler)
    with pytest.raises(TransportError) as excinfo:
        await client.synthesize("Hi")
    await client.aclose()

    assert excinfo.value.status_code == 503
    assert excinfo.value.detail == "voice model loading"


async def test_json_body_instead_of_audio_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"detail": "quota exceeded"})

    client = make_client(handler)
    with pytest.raises(TransportError) as excinfo:
        await client.synthesize("Hi")
    await client.aclose()

    assert excinfo.value.status_code == 502
    assert excinfo.value.detail == "quota exceeded"


async def test_timeouts_map_to_bad_gateway() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client = make_client(handler)
    with pytest.raises(TransportError) as excinfo:
        await client.synthesize("Hi")
    await client.aclose()

    assert excinfo.value.status_code == 502
