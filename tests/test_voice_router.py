from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from echo_backend.routers.voice_assistant import get_conversation_orchestrator, router
from echo_backend.schemas.conversation import ConversationTurn, SessionState
from echo_backend.schemas.voice import VoiceStatus
from echo_backend.services.voice_session import VoiceConnectionManager
from fakes import wait_for


class DummyOrchestrator:
    def __init__(self, manager: VoiceConnectionManager) -> None:
        self.manager = manager
        self.active = False
        self.start_calls = 0
        self.stop_calls = 0

    def describe(self) -> VoiceStatus:
        return VoiceStatus(
            state="listening" if self.active else "inactive",
            is_session_active=self.active,
            is_listening=self.active,
            is_speaking=False,
            session_id="abc123" if self.active else None,
            turns=0,
        )

    async def start_session(self) -> None:
        self.start_calls += 1
        self.active = True
        await self.manager.broadcast({"type": "state", "state": "listening"})

    async def stop_session(self) -> None:
        self.stop_calls += 1
        self.active = False
        await self.manager.broadcast({"type": "state", "state": "inactive"})


def make_app() -> tuple[FastAPI, DummyOrchestrator]:
    app = FastAPI()
    manager = VoiceConnectionManager()
    orchestrator = DummyOrchestrator(manager)
    app.state.voice_connection_manager = manager
    app.state.conversation_orchestrator = orchestrator
    app.dependency_overrides[get_conversation_orchestrator] = lambda: orchestrator
    app.include_router(router)
    return app, orchestrator


def test_status_reports_session_accessors() -> None:
    app, orchestrator = make_app()
    client = TestClient(app)

    response = client.get("/api/voice/status")

    assert response.status_code == 200
    assert response.json() == {
        "state": "inactive",
        "is_session_active": False,
        "is_listening": False,
        "is_speaking": False,
        "session_id": None,
        "started_at": None,
        "turns": 0,
    }


def test_websocket_starts_and_stops_the_session() -> None:
    app, orchestrator = make_app()
    client = TestClient(app)

    with client.websocket_connect("/api/voice/ws?client_id=ui-1") as websocket:
        hello = websocket.receive_json()
        assert hello["type"] == "status"
        assert hello["is_session_active"] is False

        websocket.send_json({"type": "start_session"})
        assert websocket.receive_json() == {"type": "state", "state": "listening"}
        assert orchestrator.start_calls == 1

        websocket.send_json({"type": "ping"})
        assert websocket.receive_json() == {"type": "pong"}

        websocket.send_json({"type": "stop_session"})
        assert websocket.receive_json() == {"type": "state", "state": "inactive"}
        assert orchestrator.stop_calls == 1

        websocket.send_json({"type": "dance"})
        assert websocket.receive_json() == {"type": "error", "message": "Unsupported message"}

    manager: VoiceConnectionManager = app.state.voice_connection_manager
    assert manager.active_connections == {}


class StubWebSocket:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.accepted = False
        self.sent: list[dict] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, message: dict) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)


@pytest.mark.anyio
async def test_manager_formats_orchestrator_events() -> None:
    manager = VoiceConnectionManager()
    websocket = StubWebSocket()
    await manager.connect(websocket, "ui-1")  # type: ignore[arg-type]

    manager.on_state_change(SessionState.SPEAKING)
    manager.on_turn_rendered(ConversationTurn(role="assistant", content="Hi!", complete=True))
    manager.on_turn_discarded(ConversationTurn(role="assistant", content="Hm"))
    manager.on_error("Assistant reply failed (500): boom")
    await wait_for(lambda: len(websocket.sent) == 4)

    assert websocket.accepted
    assert websocket.sent[0] == {"type": "state", "state": "speaking"}
    assert websocket.sent[1]["type"] == "turn"
    assert websocket.sent[1]["turn"]["content"] == "Hi!"
    assert websocket.sent[1]["turn"]["complete"] is True
    assert websocket.sent[2]["type"] == "turn_discarded"
    assert websocket.sent[3] == {
        "type": "error",
        "message": "Assistant reply failed (500): boom",
    }


@pytest.mark.anyio
async def test_failed_sends_drop_the_client() -> None:
    manager = VoiceConnectionManager()
    await manager.connect(StubWebSocket(fail=True), "ui-1")  # type: ignore[arg-type]

    await manager.broadcast({"type": "state", "state": "listening"})

    assert manager.get_connection("ui-1") is None
