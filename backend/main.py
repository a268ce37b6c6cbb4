from fastapi import FastAPI, WebSocket, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, field_validator
from typing import Literal, Optional
from contextlib import asynccontextmanager
import re
import logging
import uvicorn

import config
config.setup_logging()

from errors import UpstreamProviderFailure
from game_engine import GameEngine
from grace_period import ReconnectionTable
from lobby_manager import LobbyManager
from password_utils import hash_password, verify_password
from persistence import InMemoryStore, RoomDocument
from persistence_driver import PersistenceDriver
from question_provider import QuestionProvider
from room_state import RoomRegistry, default_settings
from socket_manager import ConnectionHub, SocketManager

logger = logging.getLogger(__name__)

# Process-wide services, built once and handed to every handler
store = InMemoryStore()
registry = RoomRegistry()
reconnections = ReconnectionTable()
hub = ConnectionHub()
question_provider = QuestionProvider()
lobby = LobbyManager(registry, store, hub, reconnections)
engine = GameEngine(registry, hub, question_provider, PersistenceDriver(store))
socket_manager = SocketManager(hub, lobby, engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Trivia Home backend")
    reconnections.start_sweep_loop()
    yield
    await reconnections.stop_sweep_loop()
    logger.info("Shutting down Trivia Home backend")


app = FastAPI(title="Trivia Home Backend", lifespan=lifespan)


def _normalize_username(v: str) -> str:
    v = v.strip().lower()
    if len(v) > config.MAX_USERNAME_LENGTH:
        raise ValueError(f'Username cannot exceed {config.MAX_USERNAME_LENGTH} characters.')
    if len(v) < config.MIN_USERNAME_LENGTH:
        raise ValueError(f'Username must be at least {config.MIN_USERNAME_LENGTH} characters.')
    return v


class RoomCreateRequest(BaseModel):
    room_name: str
    password: str
    username: str
    user_id: Optional[str] = None

    @field_validator('room_name')
    @classmethod
    def validate_room_name(cls, v: str) -> str:
        v = v.strip().upper()
        if not re.match(config.ROOM_ID_PATTERN, v):
            raise ValueError('Room name must be 4-10 letters or digits.')
        return v

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        if not v:
            raise ValueError('Please enter a password.')
        return v

    @field_validator('username')
    @classmethod
    def validate_username(cls, v: str) -> str:
        return _normalize_username(v)


class RoomJoinRequest(BaseModel):
    room_id: str
    password: str
    username: str
    user_id: Optional[str] = None

    @field_validator('room_id')
    @classmethod
    def validate_room_id(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator('username')
    @classmethod
    def validate_username(cls, v: str) -> str:
        return _normalize_username(v)


async def _ensure_user(username: str, user_id: Optional[str]):
    user = await store.find_user(user_id=user_id, username=username)
    if user is None:
        user = await store.create_user(username, user_id=user_id)
    return user


@app.post("/api/rooms/create", status_code=201)
async def create_room(request: RoomCreateRequest):
    if await store.find_room(request.room_name):
        raise HTTPException(status_code=409, detail="Room name already taken. Please choose another.")

    await _ensure_user(request.username, request.user_id)
    room = RoomDocument(
        room_id=request.room_name,
        password_hash=hash_password(request.password),
        host_id=request.username,
        settings=default_settings(),
    )
    await store.create_room(room)
    logger.info("Room created: %s (host '%s')", room.room_id, room.host_id)
    return {
        "message": "Room created successfully!",
        "room_id": room.room_id,
        "settings": room.settings,
        "host_id": room.host_id,
    }


@app.post("/api/rooms/join")
async def join_room(request: RoomJoinRequest):
    room = await store.find_room(request.room_id)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found.")
    if not verify_password(request.password, room.password_hash):
        raise HTTPException(status_code=401, detail="Incorrect password.")

    live = registry.get(room.room_id)
    if live and len(live.players) >= live.settings["max_players"]:
        raise HTTPException(status_code=409, detail="Room is full.")

    await _ensure_user(request.username, request.user_id)
    return {
        "message": "Successfully joined room!",
        "room_id": room.room_id,
        "settings": live.settings if live else room.settings,
        "host_id": room.host_id,
    }


@app.get("/api/categories")
async def get_categories():
    try:
        return await question_provider.fetch_categories()
    except UpstreamProviderFailure:
        raise HTTPException(status_code=502, detail="Failed to fetch categories from trivia API")


@app.get("/api/questions")
async def get_questions(amount: int = config.DEFAULT_QUESTION_COUNT, category: str = "any",
                        difficulty: str = "any", type: str = config.DEFAULT_QUESTION_TYPE):
    if not (config.MIN_QUESTION_COUNT <= amount <= config.MAX_QUESTION_COUNT_UPDATE):
        raise HTTPException(status_code=400, detail="Invalid amount")
    try:
        questions = await question_provider.fetch(amount, category.split(","), difficulty, type)
    except UpstreamProviderFailure:
        raise HTTPException(status_code=502, detail="Failed to fetch questions from trivia API")
    return [{**q.snapshot(), "category": q.category, "difficulty": q.difficulty} for q in questions]


@app.get("/api/stats/global/top")
async def get_top_stats():
    return await store.top_stats(config.GLOBAL_LEADERBOARD_SIZE)


@app.get("/api/stats/{user_id}")
async def get_user_stats(user_id: str):
    stats = await store.find_stats(user_id)
    if stats is None:
        raise HTTPException(status_code=404, detail="Stats not found")
    return stats


@app.get("/api/users/{username}/coins")
async def get_user_coins(username: str):
    user = await store.find_user(username=username)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {"username": user.username, "coins": user.coins}


class UserSettingsUpdate(BaseModel):
    sound_enabled: Optional[bool] = None
    notifications_enabled: Optional[bool] = None
    theme: Optional[Literal["dark", "light", "system"]] = None
    fast_mode: Optional[bool] = None
    preferred_language: Optional[str] = None


@app.get("/api/settings/{user_id}")
async def get_user_settings(user_id: str):
    settings = await store.find_user_settings(user_id)
    if settings is None:
        raise HTTPException(status_code=404, detail="Settings not found for this user.")
    return settings


@app.put("/api/settings/{user_id}")
async def update_user_settings(user_id: str, request: UserSettingsUpdate):
    settings = await store.upsert_user_settings(user_id, request.model_dump(exclude_none=True))
    logger.info("Preferences saved for user %s", user_id)
    return settings


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await socket_manager.connect(websocket)


# Configure CORS
if config.ALLOWED_ORIGINS.strip():
    origins = [o.strip() for o in config.ALLOWED_ORIGINS.split(",")]
else:
    origins = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type"],
)


@app.get("/")
async def root():
    return {"message": "Trivia Home backend is running"}


@app.get("/health")
async def health():
    return {"status": "healthy", "active_rooms": len(registry)}


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)
