# backend/cashdesk/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key. Also signs claim tokens.
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/barbershop.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///barbershop.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Claim tokens handed to the customer at checkout (QR code)
    CLAIM_TOKEN_TTL_SECONDS = int(os.environ.get("CLAIM_TOKEN_TTL_SECONDS", "300"))
    CLAIM_TOKEN_ALGORITHM = "HS256"

    LOYALTY_STAMPS_PER_REWARD = int(os.environ.get("LOYALTY_STAMPS_PER_REWARD", "10"))

    SHIFT_HISTORY_LIMIT = 30
    SHIFT_EXPORT_LIMIT = 100

    DB_RETRY_ATTEMPTS = 3
