# backend/app/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/seicheese.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///seicheese.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Check-in award policy
    CHECKIN_BASE_POINTS = _env_int("CHECKIN_BASE_POINTS", 100)
    CHECKIN_FIRST_VISIT_BONUS = _env_int("CHECKIN_FIRST_VISIT_BONUS", 500)
    CHECKIN_CONSECUTIVE_BONUS = _env_int("CHECKIN_CONSECUTIVE_BONUS", 200)
    CHECKIN_FIVE_VISIT_BONUS = _env_int("CHECKIN_FIVE_VISIT_BONUS", 200)
    CHECKIN_TEN_VISIT_BONUS = _env_int("CHECKIN_TEN_VISIT_BONUS", 1000)
    CHECKIN_DUPLICATE_WINDOW_HOURS = _env_int("CHECKIN_DUPLICATE_WINDOW_HOURS", 24)
    CHECKIN_CONSECUTIVE_WINDOW_HOURS = _env_int("CHECKIN_CONSECUTIVE_WINDOW_HOURS", 24)

    # Request handling
    CHECKIN_TIMEOUT_SECONDS = float(os.environ.get("CHECKIN_TIMEOUT_SECONDS", "10"))
    CHECKIN_RETRY_ATTEMPTS = _env_int("CHECKIN_RETRY_ATTEMPTS", 3)

    SESSION_ABSOLUTE_TIMEOUT_HOURS = _env_int("SESSION_ABSOLUTE_TIMEOUT_HOURS", 24)
    SESSION_IDLE_TIMEOUT_HOURS = _env_int("SESSION_IDLE_TIMEOUT_HOURS", 2)

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "https://seicheese.jp,https://www.seicheese.jp,http://localhost:3000,http://localhost:8080",
        ).split(",")
        if origin.strip()
    ]
