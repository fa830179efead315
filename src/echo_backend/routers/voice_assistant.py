"""HTTP and WebSocket surface for the voice session."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from ..conversation import ConversationOrchestrator
from ..schemas.voice import VoiceCommand, VoiceStatus
from ..services.voice_session import VoiceConnectionManager

router = APIRouter(prefix="/api/voice", tags=["Voice Assistant"])
logger = logging.getLogger(__name__)


def get_conversation_orchestrator(request: Request) -> ConversationOrchestrator:
    return request.app.state.conversation_orchestrator


@router.get("/status", response_model=VoiceStatus)
async def voice_status(
    orchestrator: ConversationOrchestrator = Depends(get_conversation_orchestrator),
) -> VoiceStatus:
    return orchestrator.describe()


async def handle_connection(
    websocket: WebSocket,
    client_id: str,
    manager: VoiceConnectionManager,
    orchestrator: ConversationOrchestrator,
) -> None:
    """
    Main loop for one UI client.

    The client starts and stops the session; state changes, rendered turns
    and errors are pushed to every connected client by the manager.
    """
    await manager.connect(websocket, client_id)
    await manager.send_message(
        client_id, {"type": "status", **orchestrator.describe().model_dump(mode="json")}
    )
    try:
        while True:
            data = await websocket.receive_json()
            connection = manager.get_connection(client_id)
            if connection is not None:
                connection.update_activity()

            try:
                command = VoiceCommand.model_validate(data)
            except ValidationError:
                logger.warning(f"Ignoring unknown message from {client_id}: {data!r}")
                await manager.send_message(
                    client_id, {"type": "error", "message": "Unsupported message"}
                )
                continue

            if command.type == "start_session":
                logger.info(f"Session start requested by {client_id}")
                try:
                    await orchestrator.start_session()
                except Exception as exc:
                    logger.error(f"Failed to start session: {exc}", exc_info=True)
                    await manager.broadcast(
                        {"type": "error", "message": f"Could not start session: {exc}"}
                    )
            elif command.type == "stop_session":
                logger.info(f"Session stop requested by {client_id}")
                await orchestrator.stop_session()
            elif command.type == "ping":
                await manager.send_message(client_id, {"type": "pong"})
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: {client_id}")
    finally:
        manager.disconnect(client_id)


@router.websocket("/ws")
async def voice_websocket(websocket: WebSocket) -> None:
    manager: VoiceConnectionManager = websocket.app.state.voice_connection_manager
    orchestrator: ConversationOrchestrator = websocket.app.state.conversation_orchestrator
    client_id = websocket.query_params.get("client_id") or uuid.uuid4().hex[:8]
    await handle_connection(websocket, client_id, manager, orchestrator)


__all__ = ["get_conversation_orchestrator", "router"]
