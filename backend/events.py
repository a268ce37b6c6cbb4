"""Inbound WebSocket event payloads, validated before reaching the lobby or game."""
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Union

import config


class RoomEvent(BaseModel):
    room_id: str

    @field_validator('room_id')
    @classmethod
    def normalize_room_id(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError('Missing room ID')
        return v


class JoinRoom(RoomEvent):
    username: str
    avatar: Union[dict, str]
    user_id: Optional[str] = None

    @field_validator('username')
    @classmethod
    def validate_username(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('Missing username')
        if len(v) > config.MAX_USERNAME_LENGTH:
            raise ValueError(f'Username cannot exceed {config.MAX_USERNAME_LENGTH} characters')
        return v

    @field_validator('avatar')
    @classmethod
    def validate_avatar(cls, v):
        if not v:
            raise ValueError('Missing avatar')
        return v


class LeaveRoom(RoomEvent):
    pass


class DeleteRoom(RoomEvent):
    pass


class StartGame(RoomEvent):
    pass


class SettingsPatch(BaseModel):
    """Partial settings; only the fields sent are merged."""
    question_count: Optional[int] = None
    time_per_question: Optional[int] = None
    categories: Optional[List[Union[str, int]]] = None
    difficulty: Optional[str] = None
    max_players: Optional[int] = None

    def changes(self) -> dict:
        return self.model_dump(exclude_none=True)


class UpdateGameSettings(RoomEvent):
    settings: SettingsPatch


class SubmitAnswer(RoomEvent):
    answer: str
    user_id: Optional[str] = None

    @field_validator('answer', mode='before')
    @classmethod
    def coerce_answer(cls, v) -> str:
        return "" if v is None else str(v)


class ChatMessage(RoomEvent):
    text: str
    sender_avatar: Optional[Union[dict, str]] = None
    timestamp: Optional[float] = Field(default=None)


EVENT_MODELS = {
    "join_room": JoinRoom,
    "leave_room": LeaveRoom,
    "update_game_settings": UpdateGameSettings,
    "delete_room": DeleteRoom,
    "start_game": StartGame,
    "submit_answer": SubmitAnswer,
    "chat_message": ChatMessage,
}


def first_error_message(exc) -> str:
    """Human readable message from a pydantic ValidationError."""
    errors = exc.errors()
    if not errors:
        return "Invalid message"
    msg = errors[0].get("msg", "Invalid message")
    # pydantic prefixes custom validator messages
    return msg.removeprefix("Value error, ")
