from fastapi import WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState
from pydantic import ValidationError
from typing import Dict, List, Optional
import json
import time
import uuid
import logging

import config
from errors import GameError
from events import EVENT_MODELS, first_error_message

logger = logging.getLogger(__name__)

# Which event carries the error for a failed inbound event
ERROR_EVENTS = {
    "join_room": "join_room_error",
    "update_game_settings": "game_settings_error",
    "delete_room": "room_error",
    "start_game": "game_error",
    "chat_message": "notification",
}


class ConnectionHub:
    """Live WebSocket connections and per-room broadcast groups."""

    def __init__(self):
        self.connections: Dict[str, WebSocket] = {}  # connection_id -> ws
        self.groups: Dict[str, set] = {}  # room_id -> connection ids
        self.msg_timestamps: Dict[str, list] = {}

    def register(self, connection_id: str, websocket: WebSocket):
        self.connections[connection_id] = websocket

    def unregister(self, connection_id: str):
        self.connections.pop(connection_id, None)
        self.msg_timestamps.pop(connection_id, None)
        for room_id in list(self.groups):
            self.unsubscribe(connection_id, room_id)

    def subscribe(self, connection_id: str, room_id: str):
        self.groups.setdefault(room_id, set()).add(connection_id)

    def unsubscribe(self, connection_id: str, room_id: str):
        members = self.groups.get(room_id)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self.groups[room_id]

    def members(self, room_id: str) -> List[str]:
        return list(self.groups.get(room_id, ()))

    def is_member(self, connection_id: str, room_id: str) -> bool:
        return connection_id in self.groups.get(room_id, ())

    async def emit(self, connection_id: str, event: str, payload: Optional[dict] = None):
        ws = self.connections.get(connection_id)
        if ws is None:
            return
        try:
            await ws.send_json({**(payload or {}), "type": event})
        except Exception:
            logger.warning("Dropping connection %s after failed send", connection_id)
            self.unregister(connection_id)

    async def emit_to_room(self, room_id: str, event: str, payload: Optional[dict] = None):
        for connection_id in self.members(room_id):
            await self.emit(connection_id, event, payload)

    async def disconnect_room(self, room_id: str):
        """Close every connection subscribed to a room."""
        for connection_id in self.members(room_id):
            self.unsubscribe(connection_id, room_id)
            ws = self.connections.get(connection_id)
            if ws is None:
                continue
            try:
                await ws.close(code=1000)
            except Exception:
                logger.debug("Connection %s already closed", connection_id)

    def allow_message(self, connection_id: str) -> bool:
        now = time.time()
        timestamps = self.msg_timestamps.setdefault(connection_id, [])
        timestamps[:] = [t for t in timestamps if now - t < 1.0]
        if len(timestamps) >= config.WS_RATE_LIMIT_PER_SEC:
            return False
        timestamps.append(now)
        return True


class SocketManager:
    def __init__(self, hub: ConnectionHub, lobby, engine):
        self.hub = hub
        self.lobby = lobby
        self.engine = engine
        self.allowed_origins: List[str] = []

    async def connect(self, websocket: WebSocket):
        # Validate WebSocket origin
        origin = websocket.headers.get("origin", "")
        if self.allowed_origins and origin not in self.allowed_origins:
            logger.warning("Rejected WebSocket from unauthorized origin: %s", origin)
            await websocket.close(code=1008)
            return

        await websocket.accept()
        connection_id = uuid.uuid4().hex
        self.hub.register(connection_id, websocket)
        logger.info("Client %s connected", connection_id)
        await websocket.send_json({"type": "connected", "connection_id": connection_id})

        try:
            while True:
                data = await websocket.receive_text()

                if len(data) > config.MAX_WS_MESSAGE_SIZE:
                    await websocket.send_json({"type": "error", "message": "Message too large"})
                    continue

                if not self.hub.allow_message(connection_id):
                    await websocket.send_json({"type": "error", "message": "Too many messages"})
                    continue

                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Malformed JSON from client %s: %s", connection_id, data[:100])
                    await websocket.send_json({"type": "error", "message": "Invalid message format"})
                    continue
                if not isinstance(message, dict):
                    await websocket.send_json({"type": "error", "message": "Invalid message format"})
                    continue

                await self.handle_message(connection_id, message)
                if websocket.application_state != WebSocketState.CONNECTED:
                    break  # closed by a room deletion
        except WebSocketDisconnect:
            logger.info("Client %s disconnected", connection_id)
        except Exception:
            logger.exception("WebSocket error for client %s", connection_id)
        finally:
            await self.handle_disconnect(connection_id)

    async def handle_disconnect(self, connection_id: str):
        try:
            await self.lobby.disconnect(connection_id)
        finally:
            self.hub.unregister(connection_id)

    async def handle_message(self, connection_id: str, message: dict):
        msg_type = message.get("type")
        model = EVENT_MODELS.get(msg_type) if isinstance(msg_type, str) else None
        if model is None:
            await self.hub.emit(connection_id, "error", {"message": f"Unknown event: {msg_type}"})
            return

        try:
            event = model.model_validate(message)
        except ValidationError as e:
            logger.warning("Invalid %s from %s: %s", msg_type, connection_id, e.errors()[:1])
            await self._report(connection_id, msg_type, first_error_message(e))
            return

        try:
            await self.dispatch(connection_id, msg_type, event)
        except GameError as e:
            logger.info("%s rejected for %s: %s", msg_type, connection_id, e.message)
            await self._report(connection_id, msg_type, e.message)
        except Exception:
            logger.exception("Error handling %s from %s", msg_type, connection_id)
            await self._report(connection_id, msg_type, "An unexpected error occurred.")

    async def dispatch(self, connection_id: str, msg_type: str, event):
        if msg_type == "join_room":
            await self.lobby.join(event.room_id, event.username, event.avatar,
                                  connection_id, event.user_id)

        elif msg_type == "leave_room":
            await self.lobby.leave(event.room_id, connection_id)

        elif msg_type == "update_game_settings":
            await self.lobby.update_settings(event.room_id, connection_id, event.settings.changes())

        elif msg_type == "delete_room":
            await self.lobby.delete_room(event.room_id, connection_id)

        elif msg_type == "start_game":
            await self.engine.start(event.room_id, connection_id)

        elif msg_type == "submit_answer":
            await self.engine.submit_answer(event.room_id, connection_id, event.answer, event.user_id)

        elif msg_type == "chat_message":
            await self.relay_chat(connection_id, event)

    async def relay_chat(self, connection_id: str, event):
        text = event.text.strip()
        if not text:
            return
        if len(text) > config.MAX_CHAT_MESSAGE_LENGTH:
            await self.hub.emit(connection_id, "notification", {
                "level": "error",
                "message": f"Chat messages cannot exceed {config.MAX_CHAT_MESSAGE_LENGTH} characters.",
            })
            return
        room = self.lobby.registry.get(event.room_id)
        player = room.players.get(connection_id) if room else None
        if player is None or not self.hub.is_member(connection_id, event.room_id):
            logger.warning("Client %s tried to chat in room %s without being in it", connection_id, event.room_id)
            await self.hub.emit(connection_id, "notification", {
                "level": "error",
                "message": "You are not in this room.",
            })
            return
        await self.hub.emit_to_room(event.room_id, "chat_message", {
            "sender_id": player.user_id or connection_id,
            "sender_name": player.username,
            "sender_avatar": event.sender_avatar if event.sender_avatar is not None else player.avatar,
            "text": text,
            "timestamp": event.timestamp or time.time(),
        })

    async def _report(self, connection_id: str, msg_type: str, message: str):
        if msg_type == "submit_answer":
            await self.hub.emit(connection_id, "answer_feedback", {"success": False, "message": message})
        elif msg_type in ERROR_EVENTS:
            payload = {"message": message}
            if msg_type == "chat_message":
                payload["level"] = "error"
            await self.hub.emit(connection_id, ERROR_EVENTS[msg_type], payload)
        else:
            # leave_room failures are only logged
            logger.debug("No error channel for %s: %s", msg_type, message)
