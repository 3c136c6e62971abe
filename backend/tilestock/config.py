# backend/tilestock/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tilestock.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tilestock.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Shops created without an explicit threshold get this one (total pieces)
    LOW_STOCK_THRESHOLD_DEFAULT = int(os.environ.get("LOW_STOCK_THRESHOLD_DEFAULT", "50"))

    SESSION_ABSOLUTE_TIMEOUT_HOURS = int(os.environ.get("SESSION_ABSOLUTE_TIMEOUT_HOURS", "24"))

    # bcrypt cost factor for password hashing
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    DEFAULT_PAGE_SIZE = 20
    MAX_PAGE_SIZE = 100

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
