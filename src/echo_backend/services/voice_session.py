import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import WebSocket

from ..schemas.conversation import ConversationTurn, SessionState

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UIConnection:
    """Tracks one UI client watching the voice session."""

    client_id: str
    websocket: WebSocket
    connected_at: datetime = field(default_factory=_utcnow)
    last_activity: datetime = field(default_factory=_utcnow)

    def update_activity(self):
        """Update the last activity timestamp."""
        self.last_activity = _utcnow()


class VoiceConnectionManager:
    """Manages UI WebSocket connections and fans session events out to them."""

    def __init__(self):
        self.active_connections: Dict[str, UIConnection] = {}
        self._pending: set[asyncio.Task[None]] = set()

    async def connect(self, websocket: WebSocket, client_id: str):
        """Accept a new WebSocket connection."""
        await websocket.accept()
        self.active_connections[client_id] = UIConnection(
            client_id=client_id, websocket=websocket
        )
        logger.info(f"Client connected: {client_id}")

    def disconnect(self, client_id: str):
        """Forget a client connection."""
        if self.active_connections.pop(client_id, None) is not None:
            logger.info(f"Client disconnected: {client_id}")

    def get_connection(self, client_id: str) -> Optional[UIConnection]:
        return self.active_connections.get(client_id)

    async def send_message(self, client_id: str, message: dict[str, Any]):
        """Send a JSON message to a specific client."""
        connection = self.active_connections.get(client_id)
        if connection is None:
            return
        try:
            await connection.websocket.send_json(message)
        except Exception as e:
            logger.warning(f"Error sending to {client_id}: {e}")
            self.disconnect(client_id)

    async def broadcast(self, message: dict[str, Any]):
        """Broadcast a message to all connected clients."""
        clients = list(self.active_connections.keys())
        logger.debug(f"Broadcasting {message.get('type')} to {len(clients)} clients")
        for client_id in clients:
            await self.send_message(client_id, message)

    def publish(self, message: dict[str, Any]) -> None:
        """Schedule a broadcast from synchronous code running on the loop."""
        if not self.active_connections:
            return
        task = asyncio.create_task(self.broadcast(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    # Orchestrator callbacks -------------------------------------------------
    def on_state_change(self, state: SessionState) -> None:
        self.publish({"type": "state", "state": state.value})

    def on_turn_rendered(self, turn: ConversationTurn) -> None:
        self.publish({"type": "turn", "turn": turn.asdict()})

    def on_turn_discarded(self, turn: ConversationTurn) -> None:
        self.publish({"type": "turn_discarded", "turn": turn.asdict()})

    def on_error(self, message: str) -> None:
        self.publish({"type": "error", "message": message})
