"""Centralized configuration: all env vars in one place."""
import os
import logging
from dotenv import load_dotenv

load_dotenv()

# --- Storage ---
STORE_BACKEND = os.getenv("STORE_BACKEND", "memory")  # memory | sql
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./party_rooms.db")

# --- Round content ---
ROUNDS_FILE = os.getenv("ROUNDS_FILE", "")  # empty = no file source
ROUNDS_API_URL = os.getenv("ROUNDS_API_URL", "")  # PostgREST-style base URL
ROUNDS_API_KEY = os.getenv("ROUNDS_API_KEY", "")
ROUNDS_API_TIMEOUT = int(os.getenv("ROUNDS_API_TIMEOUT", "10"))

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# --- Transactions ---
MAX_TRANSACTION_ATTEMPTS = 6

# --- Room codes ---
ROOM_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"  # no 0/O, 1/I/L
ROOM_CODE_LENGTH = 5
MAX_ROOM_CODE_ATTEMPTS = 5

# --- Players ---
MAX_NAME_LENGTH = 24
DEFAULT_PLAYER_NAME = "Spieler"
REJOIN_TIMEOUT_SECONDS = float(os.getenv("REJOIN_TIMEOUT_SECONDS", "2.5"))

# --- Locks & activity ---
LOCK_TTL_MS = 15000
ACTIVITY_TTL_MS = 5000
MAX_ACTIVITY = 4
MAX_ACTIVITY_TEXT_LENGTH = 140

# --- Game ---
CATEGORIES = ("aufzaehlen", "trifft", "sortieren", "fakten", "fehler")
ENABLED_CATEGORIES = tuple(
    c.strip() for c in os.getenv("ENABLED_CATEGORIES", ",".join(CATEGORIES)).split(",")
    if c.strip()
)
DEFAULT_GRID_ROWS = 4
DEFAULT_GRID_COLS = 10
MAX_CELL_TEXT_LENGTH = 60
MAX_FACT_TEXT_LENGTH = 220
DEFAULT_MARKER_RADIUS = 0.1
IMAGE_SIZE_EPSILON = 0.5  # px

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
