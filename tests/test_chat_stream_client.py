from __future__ import annotations

import json

import httpx
import pytest
from pydantic import AnyHttpUrl, SecretStr

from echo_backend.chat_stream import ChatStreamClient
from echo_backend.config import Settings
from echo_backend.errors import TransportError

pytestmark = pytest.mark.anyio


def make_settings() -> Settings:
    return Settings(
        openai_api_key=SecretStr("test-key"),
        model_base_url=AnyHttpUrl("https://example.com/v1"),
    )


def sse(*payloads: object) -> bytes:
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode()


def delta(content: str) -> dict[str, object]:
    return {"choices": [{"delta": {"content": content}}]}


def make_client(handler) -> ChatStreamClient:
    return ChatStreamClient(make_settings(), transport=httpx.MockTransport(handler))


def test_build_request_uses_persona_and_sampling_settings() -> None:
    client = ChatStreamClient(make_settings())
    payload = client.build_request("What's up?").to_payload()

    assert payload["model"] == "gpt-4"
    assert payload["stream"] is True
    assert payload["temperature"] == 0.8
    assert payload["presence_penalty"] == 0.6
    assert payload["frequency_penalty"] == 0.5
    assert [m["role"] for m in payload["messages"]] == ["system", "user"]
    assert payload["messages"][1]["content"] == "What's up?"


async def test_multi_line_data_and_comments_are_handled() -> None:
    chunk = json.dumps(delta("joined"), indent=1).splitlines()
    body = (
        ": keep-alive\n\n"
        "event: completion\nid: 7\n"
        + "".join(f"data: {line}\n" for line in chunk)
        + "\ndata: [DONE]\n\n"
    )

    client = make_client(lambda request: httpx.Response(200, content=body.encode()))
    try:
        parts = [part async for part in client.stream_text(client.build_request("hi"))]
    finally:
        await client.aclose()

    assert parts == ["joined"]


async def test_stream_text_yields_deltas_until_done() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        body = sse(delta("Hello"), {"choices": [{"delta": {}}]}, delta(" world"), "[DONE]", delta("ignored"))
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    client = make_client(handler)
    try:
        parts = [part async for part in client.stream_text(client.build_request("hi"))]
    finally:
        await client.aclose()

    assert parts == ["Hello", " world"]
    assert seen["url"] == "https://example.com/v1/chat/completions"
    assert seen["auth"] == "Bearer test-key"
    assert seen["body"]["stream"] is True  # type: ignore[index]


async def test_error_status_raises_transport_error_with_detail() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "Invalid API key"}})

    client = make_client(handler)
    with pytest.raises(TransportError) as excinfo:
        async for _ in client.stream_text(client.build_request("hi")):
            pass
    await client.aclose()

    assert excinfo.value.status_code == 401
    assert excinfo.value.detail == "Invalid API key"


async def test_malformed_stream_data_raises_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=sse(delta("ok"), "{not json"))

    client = make_client(handler)
    parts: list[str] = []
    with pytest.raises(TransportError) as excinfo:
        async for part in client.stream_text(client.build_request("hi")):
            parts.append(part)
    await client.aclose()

    assert parts == ["ok"]
    assert excinfo.value.status_code == 502


async def test_network_failure_maps_to_bad_gateway() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    with pytest.raises(TransportError) as excinfo:
        async for _ in client.stream_text(client.build_request("hi")):
            pass
    await client.aclose()

    assert excinfo.value.status_code == 502
