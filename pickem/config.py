from __future__ import annotations

import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, minimum: int, maximum: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer") from exc
    return max(minimum, min(maximum, value))


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./pickem.db")
SQL_ECHO = _env_bool("SQL_ECHO", False)

APP_ENV = os.getenv("APP_ENV", "development").strip().lower()
CRON_SECRET = (os.getenv("CRON_SECRET") or "").strip() or None

# Delay between a results update and the automatic fantasy winner pick.
AUTO_WINNER_DELAY_MINUTES = _env_int("AUTO_WINNER_DELAY_MINUTES", 15, 0, 24 * 60)
FINALIZE_BATCH_LIMIT = _env_int("FINALIZE_BATCH_LIMIT", 100, 1, 100)

LEAGUE_TIME_ZONE = os.getenv("LEAGUE_TIME_ZONE", "America/Indiana/Indianapolis")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def is_production() -> bool:
    return APP_ENV == "production"
