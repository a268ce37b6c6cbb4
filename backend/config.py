"""Centralized configuration: every env var the trivia backend reads."""
import os
import logging
from dotenv import load_dotenv

load_dotenv()

# --- Trivia API ---
TRIVIA_API_URL = os.getenv("TRIVIA_API_URL", "https://opentdb.com/api.php")
TRIVIA_CATEGORY_URL = os.getenv("TRIVIA_CATEGORY_URL", "https://opentdb.com/api_category.php")
TRIVIA_API_TIMEOUT = int(os.getenv("TRIVIA_API_TIMEOUT", "10"))
DEFAULT_QUESTION_TYPE = "multiple"

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "5000"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# --- WebSocket Security ---
WS_RATE_LIMIT_PER_SEC = 10  # max messages per second per client
MAX_WS_MESSAGE_SIZE = 4096  # bytes
MAX_CHAT_MESSAGE_LENGTH = 300

# --- Auth ---
PASSWORD_HASH_ITERATIONS = int(os.getenv("PASSWORD_HASH_ITERATIONS", "200000"))
MIN_USERNAME_LENGTH = 3
MAX_USERNAME_LENGTH = 26
ROOM_ID_PATTERN = r"^[A-Z0-9]{4,10}$"

# --- Game ---
POINTS_FOR_CORRECT_ANSWER = 100
BONUS_FOR_FASTEST_ANSWER_PERCENT = 0.2  # 20% bonus
GAME_START_DELAY_SECONDS = float(os.getenv("GAME_START_DELAY_SECONDS", "3"))
MIN_PLAYERS_TO_START = 2
WINNER_BASE_COINS = 100
LOSER_BASE_COINS = 10

# --- Room settings ---
DEFAULT_QUESTION_COUNT = 10
DEFAULT_TIME_PER_QUESTION = 20
DEFAULT_MAX_PLAYERS = 8
MIN_QUESTION_COUNT = 1
MAX_QUESTION_COUNT_UPDATE = 50  # host settings update
MIN_TIME_PER_QUESTION = 5
MAX_TIME_PER_QUESTION = 60
MIN_MAX_PLAYERS = 2
MAX_MAX_PLAYERS = 12
VALID_DIFFICULTIES = ("any", "easy", "medium", "hard")

# --- Reconnection grace period ---
RECONNECT_GRACE_SECONDS = float(os.getenv("RECONNECT_GRACE_SECONDS", "3"))
RECONNECT_CLAIM_RELEASE_SECONDS = 3
RECONNECT_SWEEP_INTERVAL = 10

# --- Leaderboard ---
GLOBAL_LEADERBOARD_SIZE = 25

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")  # empty = stdout only


def setup_logging():
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
