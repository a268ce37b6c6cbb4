from typing import Dict, List, Optional
import asyncio
import logging

import config

logger = logging.getLogger(__name__)

WAITING = "waiting"
PLAYING = "playing"
FINISHED = "finished"


def default_settings() -> dict:
    return {
        "question_count": config.DEFAULT_QUESTION_COUNT,
        "time_per_question": config.DEFAULT_TIME_PER_QUESTION,
        "categories": ["any"],
        "difficulty": "any",
        "max_players": config.DEFAULT_MAX_PLAYERS,
    }


class QuestionRecord:
    def __init__(self, question_text: str, correct_answer: str, options: List[str],
                 type: str = "multiple", category: str = "", difficulty: str = ""):
        self.question_text = question_text
        self.correct_answer = correct_answer
        self.options = options
        self.type = type
        self.category = category
        self.difficulty = difficulty
        # Reset on every dispatch of this question
        self.first_correct_answer_socket_id: Optional[str] = None

    def snapshot(self) -> dict:
        """Persistable copy without transient fields."""
        return {
            "question_text": self.question_text,
            "correct_answer": self.correct_answer,
            "options": list(self.options),
            "type": self.type,
        }


class PlayerState:
    def __init__(self, socket_id: str, username: str, avatar: dict,
                 user_id: Optional[str] = None, coins: int = 0):
        self.socket_id = socket_id
        self.username = username
        self.avatar = avatar
        self.user_id = user_id
        self.score = 0
        self.answered = False
        self.is_host = False
        self.question_start_time: float = 0
        self.coins = coins

    def to_dict(self) -> dict:
        return {
            "socket_id": self.socket_id,
            "username": self.username,
            "avatar": self.avatar,
            "score": self.score,
            "is_host": self.is_host,
            "answered": self.answered,
            "user_id": self.user_id,
            "coins": self.coins,
        }


class RoomState:
    def __init__(self, room_id: str, host_username: str, settings: Optional[dict] = None):
        self.room_id = room_id
        self.host_username = host_username
        self.current_host_socket_id: Optional[str] = None
        self.settings = dict(settings or default_settings())
        self.players: Dict[str, PlayerState] = {}  # socket_id -> player, join order preserved
        self.usernames_in_room: set = set()  # lowercase
        self.status = WAITING
        self.current_question_index = 0
        self.questions: List[QuestionRecord] = []
        self.question_timer: Optional[asyncio.Task] = None
        self.question_start_time: float = 0
        self.question_open = False
        self.game_started_at: float = 0
        # Bumped on every start so a slow question fetch can tell it was superseded
        self.game_generation = 0

    def participants(self) -> List[dict]:
        return [p.to_dict() for p in self.players.values()]

    def resolved_host_username(self) -> str:
        host = self.players.get(self.current_host_socket_id) if self.current_host_socket_id else None
        return host.username if host else self.host_username

    def lobby_snapshot(self) -> dict:
        return {
            "room_id": self.room_id,
            "participants": self.participants(),
            "settings": self.settings,
            "status": self.status,
            "host_username": self.resolved_host_username(),
        }

    def refresh_host_flags(self):
        for socket_id, player in self.players.items():
            player.is_host = socket_id == self.current_host_socket_id

    def remove_player(self, socket_id: str) -> Optional[PlayerState]:
        """Remove a player and hand host authority to the earliest remaining joiner."""
        player = self.players.pop(socket_id, None)
        if player is None:
            return None
        key = player.username.lower()
        if not any(p.username.lower() == key for p in self.players.values()):
            self.usernames_in_room.discard(key)
        if socket_id == self.current_host_socket_id:
            self.current_host_socket_id = next(iter(self.players), None)
            if self.current_host_socket_id:
                logger.info("Host of room %s passed to '%s'", self.room_id,
                            self.players[self.current_host_socket_id].username)
        self.refresh_host_flags()
        return player

    def reset_scores(self):
        for player in self.players.values():
            player.score = 0
            player.answered = False

    def reset_for_new_game(self):
        """Back to the lobby with everyone still seated."""
        self.cancel_timer()
        self.status = WAITING
        self.question_open = False
        self.current_question_index = 0
        self.questions = []
        self.reset_scores()

    def cancel_timer(self):
        timer = self.question_timer
        self.question_timer = None
        # A timer callback that re-enters the loop must not cancel itself
        if timer and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    def current_question(self) -> Optional[QuestionRecord]:
        if 0 <= self.current_question_index < len(self.questions):
            return self.questions[self.current_question_index]
        return None


class RoomRegistry:
    """Every live room in this process, keyed by room id."""

    def __init__(self):
        self.rooms: Dict[str, RoomState] = {}

    def get(self, room_id: str) -> Optional[RoomState]:
        return self.rooms.get(room_id)

    def get_or_create(self, room_id: str, room_document) -> RoomState:
        room = self.rooms.get(room_id)
        if room is None:
            room = RoomState(room_id, room_document.host_id, room_document.settings)
            self.rooms[room_id] = room
            logger.info("Room %s loaded into memory (host '%s')", room_id, room.host_username)
        return room

    def delete(self, room_id: str) -> Optional[RoomState]:
        room = self.rooms.pop(room_id, None)
        if room:
            room.cancel_timer()
            logger.info("Room %s removed from memory", room_id)
        return room

    def snapshot(self) -> List[RoomState]:
        return list(self.rooms.values())

    def find_by_connection(self, socket_id: str) -> Optional[RoomState]:
        for room in self.snapshot():
            if socket_id in room.players:
                return room
        return None

    def __len__(self):
        return len(self.rooms)

    def __contains__(self, room_id):
        return room_id in self.rooms
