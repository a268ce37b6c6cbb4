"""Document storage for rooms, users, stats and game history.

The live game only ever talks to the async methods on ``InMemoryStore``;
swapping in a database-backed store means providing the same coroutines.
"""
from pydantic import BaseModel, Field
from typing import Dict, List, Literal, Optional
import copy
import logging
import time
import uuid

logger = logging.getLogger(__name__)


class RoomDocument(BaseModel):
    room_id: str
    password_hash: str
    host_id: str  # username of the creator
    settings: dict
    status: str = "waiting"
    created_at: float = Field(default_factory=time.time)


class UserDocument(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    username: str
    avatar: dict = Field(default_factory=lambda: {
        "head": "default-head", "body": "default-body", "accessory": "default-accessory",
    })
    coins: int = 0
    cosmetics: List[str] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)


class UserStatsDocument(BaseModel):
    user_id: str
    total_games: int = 0
    total_wins: int = 0
    total_losses: int = 0
    total_questions: int = 0
    fastest_answer_time: Optional[float] = None
    updated_at: float = Field(default_factory=time.time)


class UserSettingsDocument(BaseModel):
    """Per-user client preferences."""
    user_id: str
    sound_enabled: bool = True
    notifications_enabled: bool = True
    theme: Literal["dark", "light", "system"] = "dark"
    fast_mode: bool = False
    preferred_language: str = "en"
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)


class GameResult(BaseModel):
    username: str
    score: int = 0
    is_winner: bool = False


class GameRecord(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    room_id: str
    questions: List[dict]
    results: List[GameResult]
    start_time: float
    end_time: float


class InMemoryStore:
    def __init__(self):
        self.rooms: Dict[str, RoomDocument] = {}
        self.users: Dict[str, UserDocument] = {}  # id -> user
        self.stats: Dict[str, UserStatsDocument] = {}  # user_id -> stats
        self.user_settings: Dict[str, UserSettingsDocument] = {}  # user_id -> preferences
        self.games: List[GameRecord] = []

    def clear(self):
        self.rooms.clear()
        self.users.clear()
        self.stats.clear()
        self.user_settings.clear()
        self.games.clear()

    # --- Rooms ---

    async def find_room(self, room_id: str) -> Optional[RoomDocument]:
        room = self.rooms.get(room_id)
        return room.model_copy(deep=True) if room else None

    async def create_room(self, room: RoomDocument) -> RoomDocument:
        self.rooms[room.room_id] = room.model_copy(deep=True)
        logger.info("Room document %s created", room.room_id)
        return room

    async def delete_room(self, room_id: str) -> bool:
        deleted = self.rooms.pop(room_id, None) is not None
        if deleted:
            logger.info("Room document %s deleted", room_id)
        return deleted

    async def update_room_settings(self, room_id: str, settings: dict) -> Optional[RoomDocument]:
        room = self.rooms.get(room_id)
        if room is None:
            return None
        room.settings = copy.deepcopy(settings)
        return room.model_copy(deep=True)

    # --- Users ---

    async def find_user(self, user_id: Optional[str] = None,
                        username: Optional[str] = None) -> Optional[UserDocument]:
        if user_id and user_id in self.users:
            return self.users[user_id].model_copy(deep=True)
        if username:
            key = username.lower()
            for user in self.users.values():
                if user.username == key:
                    return user.model_copy(deep=True)
        return None

    async def create_user(self, username: str, user_id: Optional[str] = None) -> UserDocument:
        user = UserDocument(username=username.lower())
        if user_id:
            user.id = user_id
        self.users[user.id] = user
        logger.info("User '%s' created", user.username)
        return user.model_copy(deep=True)

    async def increment_user_coins(self, username: str, amount: int) -> UserDocument:
        """Add coins to a user by case-insensitive username, creating the user if needed."""
        key = username.lower()
        user = next((u for u in self.users.values() if u.username == key), None)
        if user is None:
            user = UserDocument(username=key)
            self.users[user.id] = user
        user.coins = max(0, user.coins + amount)
        return user.model_copy(deep=True)

    # --- Stats ---

    async def find_stats(self, user_id: str) -> Optional[UserStatsDocument]:
        stats = self.stats.get(user_id)
        return stats.model_copy(deep=True) if stats else None

    async def create_stats(self, user_id: str) -> UserStatsDocument:
        stats = UserStatsDocument(user_id=user_id)
        self.stats[user_id] = stats
        return stats.model_copy(deep=True)

    async def save_stats(self, stats: UserStatsDocument) -> UserStatsDocument:
        stats.updated_at = time.time()
        self.stats[stats.user_id] = stats.model_copy(deep=True)
        return stats

    async def top_stats(self, limit: int) -> List[UserStatsDocument]:
        ranked = sorted(self.stats.values(), key=lambda s: s.total_wins, reverse=True)
        return [s.model_copy(deep=True) for s in ranked[:limit]]

    # --- User preferences ---

    async def find_user_settings(self, user_id: str) -> Optional[UserSettingsDocument]:
        settings = self.user_settings.get(user_id)
        return settings.model_copy(deep=True) if settings else None

    async def upsert_user_settings(self, user_id: str, changes: dict) -> UserSettingsDocument:
        """Apply the given fields, creating the record with defaults if needed."""
        current = self.user_settings.get(user_id) or UserSettingsDocument(user_id=user_id)
        self.user_settings[user_id] = UserSettingsDocument.model_validate(
            {**current.model_dump(), **changes, "updated_at": time.time()}
        )
        return self.user_settings[user_id].model_copy(deep=True)

    # --- Game history ---

    async def create_game(self, record: GameRecord) -> GameRecord:
        self.games.append(record)
        logger.info("Game history saved for room %s", record.room_id)
        return record
