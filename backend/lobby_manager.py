from typing import Optional, Union
import logging

import config
from errors import (
    GameInProgress, InvalidSettings, InvalidState, PersistenceFailure,
    RoomFull, RoomNotFound, Unauthorized, UsernameTaken,
)
from grace_period import ReconnectionTable
from persistence import InMemoryStore
from room_state import FINISHED, PLAYING, PlayerState, RoomRegistry, RoomState

logger = logging.getLogger(__name__)


def validate_settings_patch(changes: dict, room: RoomState):
    """Range checks for a host settings update. Raises InvalidSettings."""
    count = changes.get("question_count")
    if count is not None and not (config.MIN_QUESTION_COUNT <= count <= config.MAX_QUESTION_COUNT_UPDATE):
        raise InvalidSettings("Invalid question count.")
    seconds = changes.get("time_per_question")
    if seconds is not None and not (config.MIN_TIME_PER_QUESTION <= seconds <= config.MAX_TIME_PER_QUESTION):
        raise InvalidSettings("Invalid time per question.")
    difficulty = changes.get("difficulty")
    if difficulty is not None and difficulty not in config.VALID_DIFFICULTIES:
        raise InvalidSettings("Invalid difficulty.")
    max_players = changes.get("max_players")
    if max_players is not None:
        if not (config.MIN_MAX_PLAYERS <= max_players <= config.MAX_MAX_PLAYERS):
            raise InvalidSettings("Invalid max players.")
        if max_players < len(room.players):
            raise InvalidSettings("Max players cannot be lower than the players already in the room.")
    categories = changes.get("categories")
    if categories is not None:
        changes["categories"] = [str(c) for c in categories] or ["any"]


class LobbyManager:
    def __init__(self, registry: RoomRegistry, store: InMemoryStore,
                 hub, reconnections: ReconnectionTable):
        self.registry = registry
        self.store = store
        self.hub = hub
        self.reconnections = reconnections

    async def broadcast_lobby(self, room: RoomState):
        await self.hub.emit_to_room(room.room_id, "update_lobby", room.lobby_snapshot())

    async def join(self, room_id: str, username: str, avatar: Union[dict, str],
                   connection_id: str, user_id: Optional[str] = None) -> RoomState:
        if not room_id or not username or not avatar:
            raise InvalidState("Missing room ID, username, or avatar.")

        user = await self.store.find_user(user_id=user_id, username=username)
        # Looked up last so a room torn down during the user lookup is not rebuilt
        document = await self.store.find_room(room_id)
        if document is None:
            raise RoomNotFound()

        # Everything below runs without suspending, so the checks and the insert are atomic
        current = self.registry.find_by_connection(connection_id)
        if current is not None:
            raise InvalidState(f"You are already in room {current.room_id}.")

        room = self.registry.get_or_create(room_id, document)
        if len(room.players) >= room.settings["max_players"]:
            raise RoomFull()
        if room.status == PLAYING:
            raise GameInProgress()

        username_key = username.lower()
        taken = username_key in room.usernames_in_room
        in_grace = self.reconnections.is_active(username)
        if taken and not in_grace:
            raise UsernameTaken(f'Username "{username}" is already in this room.')
        if in_grace:
            # Only one reconnect may ride on a single disconnect
            if not self.reconnections.claim(username):
                raise UsernameTaken(f'Username "{username}" is already in this room.')
            logger.info("'%s' reconnected to room %s within the grace period", username, room_id)

        if username_key == room.host_username.lower() and not room.current_host_socket_id:
            room.current_host_socket_id = connection_id
        elif not room.current_host_socket_id and not room.players:
            room.current_host_socket_id = connection_id

        player = PlayerState(connection_id, username, avatar, user_id=user_id,
                             coins=user.coins if user else 0)
        room.players[connection_id] = player
        room.usernames_in_room.add(username_key)
        room.refresh_host_flags()
        self.hub.subscribe(connection_id, room_id)

        logger.info("Player '%s' joined room %s (%d/%d)", username, room_id,
                    len(room.players), room.settings["max_players"])
        await self.broadcast_lobby(room)
        return room

    async def disconnect(self, connection_id: str) -> Optional[RoomState]:
        room = self.registry.find_by_connection(connection_id)
        if room is None:
            return None
        player = room.remove_player(connection_id)
        self.reconnections.record(player.username)
        logger.info("Player '%s' disconnected from room %s", player.username, room.room_id)

        if not room.players:
            await self._teardown(room)
        else:
            await self.broadcast_lobby(room)
        return room

    async def leave(self, room_id: str, connection_id: str) -> Optional[RoomState]:
        room = self.registry.get(room_id)
        if room is None or connection_id not in room.players:
            logger.warning("Connection %s tried to leave room %s but was not in it", connection_id, room_id)
            return None

        player = room.remove_player(connection_id)
        logger.info("Player '%s' left room %s", player.username, room_id)

        if not room.players:
            room.status = FINISHED
            room.cancel_timer()
            # The leaver is still subscribed, so it receives the notice
            await self.hub.emit_to_room(room_id, "game_error", {"message": "Room became empty, quiz ended."})
            self.hub.unsubscribe(connection_id, room_id)
            await self._teardown(room)
        else:
            self.hub.unsubscribe(connection_id, room_id)
            await self.broadcast_lobby(room)
        return room

    async def _teardown(self, room: RoomState):
        if self.registry.get(room.room_id) is not room:
            return
        self.registry.delete(room.room_id)
        try:
            await self.store.delete_room(room.room_id)
        except Exception:
            logger.exception("Error deleting room %s from the database", room.room_id)

    async def update_settings(self, room_id: str, connection_id: str, changes: dict) -> RoomState:
        room = self.registry.get(room_id)
        if room is None or connection_id != room.current_host_socket_id:
            logger.warning("Unauthorized attempt to update settings for room %s", room_id)
            raise Unauthorized("You are not authorized to change settings.")
        if room.status == PLAYING:
            raise GameInProgress("Cannot change settings while a game is in progress.")

        changes = dict(changes)
        validate_settings_patch(changes, room)
        room.settings = {**room.settings, **changes}
        settings = dict(room.settings)

        try:
            await self.store.update_room_settings(room_id, settings)
        except Exception:
            logger.exception("Error saving updated settings for room %s", room_id)
            raise PersistenceFailure("Could not save settings to database.")

        # The room may have been torn down while the write was in flight
        if self.registry.get(room_id) is room:
            await self.hub.emit_to_room(room_id, "game_settings_updated", {
                "room_id": room_id,
                "settings": room.settings,
            })
        return room

    async def delete_room(self, room_id: str, connection_id: str):
        room = self.registry.get(room_id)
        if room is None or connection_id not in room.players or connection_id != room.current_host_socket_id:
            logger.warning("Unauthorized attempt to delete room %s", room_id)
            raise Unauthorized("You are not authorized to delete this room or room does not exist.")

        await self.hub.emit_to_room(room_id, "room_deleted", {
            "room_id": room_id,
            "message": "The host has deleted the room.",
        })
        room.cancel_timer()
        if self.registry.get(room_id) is room:
            self.registry.delete(room_id)
        await self.hub.disconnect_room(room_id)
        try:
            await self.store.delete_room(room_id)
        except Exception:
            logger.exception("Error deleting room %s from the database", room_id)
            raise PersistenceFailure("An error occurred while deleting the room.")
        logger.info("Room %s deleted by its host", room_id)
