# backend/mdcars/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/mdcars.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///mdcars.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Store defaults; the settings table overrides these at runtime
    STORE_NAME = os.environ.get("STORE_NAME", "MD CARS")
    DEFAULT_EXCHANGE_RATE = os.environ.get("DEFAULT_EXCHANGE_RATE", "4.85")

    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))
