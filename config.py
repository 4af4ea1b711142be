"""Configuration for the Arena competitive-play core."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _parse_int(value: Optional[str], default: int) -> int:
    if not value:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _parse_float(value: Optional[str], default: float) -> float:
    if not value:
        return default
    try:
        return float(value.strip())
    except ValueError:
        return default


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_role_names(value: str) -> set[str]:
    if not value:
        return set()
    return {x.strip().lower() for x in value.split(",") if x.strip()}


# Database
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{Path(__file__).parent / 'arena.db'}",
)
# Queue pairing and capacity checks need SERIALIZABLE on server databases.
# SQLite serializes writers already, so its driver default is kept.
DATABASE_ISOLATION_LEVEL = os.getenv("DATABASE_ISOLATION_LEVEL", "").strip() or (
    None if DATABASE_URL.startswith("sqlite") else "SERIALIZABLE"
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Transaction retry combinator
TX_RETRY_ATTEMPTS = max(1, _parse_int(os.getenv("TX_RETRY_ATTEMPTS"), 3))
TX_RETRY_BACKOFF_SECONDS = _parse_float(os.getenv("TX_RETRY_BACKOFF_SECONDS"), 0.05)

# Rating engine
ELO_K_FACTOR = _parse_int(os.getenv("ELO_K_FACTOR"), 32)
DEFAULT_RATING = _parse_int(os.getenv("DEFAULT_RATING"), 1000)
RATE_TOURNAMENT_MATCHES = _parse_bool(os.getenv("RATE_TOURNAMENT_MATCHES"), True)

# Matchmaking
MATCHMAKING_RATING_WINDOW = _parse_int(os.getenv("MATCHMAKING_RATING_WINDOW"), 200)
MATCHMAKING_CLAIM_ATTEMPTS = max(1, _parse_int(os.getenv("MATCHMAKING_CLAIM_ATTEMPTS"), 3))
LEADERBOARD_PAGE_SIZE = _parse_int(os.getenv("LEADERBOARD_PAGE_SIZE"), 20)

# Brackets
ROUND_INTERVAL_DAYS = _parse_int(os.getenv("ROUND_INTERVAL_DAYS"), 1)

# Housekeeping (0 disables each policy)
QUEUE_ENTRY_TTL_MINUTES = _parse_int(os.getenv("QUEUE_ENTRY_TTL_MINUTES"), 0)
DISPUTE_ESCALATION_HOURS = _parse_int(os.getenv("DISPUTE_ESCALATION_HOURS"), 0)
HOUSEKEEPING_INTERVAL_SECONDS = _parse_int(os.getenv("HOUSEKEEPING_INTERVAL_SECONDS"), 0)
AUTO_REGISTRATION_WINDOWS = _parse_bool(os.getenv("AUTO_REGISTRATION_WINDOWS"), False)

# Notification sink (empty URL = log only)
NOTIFY_WEBHOOK_URL = os.getenv("NOTIFY_WEBHOOK_URL", "")
NOTIFY_WEBHOOK_SECRET = os.getenv("NOTIFY_WEBHOOK_SECRET", "")
NOTIFY_TIMEOUT_SECONDS = _parse_float(os.getenv("NOTIFY_TIMEOUT_SECONDS"), 5.0)

# Web auth boundary. Tokens are issued by the platform's identity service.
JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production-use-long-random-string")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_DAYS = 7
ADMIN_ROLE_NAMES = _parse_role_names(os.getenv("ADMIN_ROLE_NAMES", "admin"))
