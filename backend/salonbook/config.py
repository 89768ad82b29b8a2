# backend/salonbook/config.py
from __future__ import annotations
import os

from .permissions import ROLE_PERMISSIONS


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/salonbook.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///salonbook.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Abandoned checkout sessions expire after this many idle minutes
    CHECKOUT_SESSION_TTL_MINUTES = int(os.environ.get("CHECKOUT_SESSION_TTL_MINUTES", "30"))

    # Static role -> capability matrix handed to permission checks
    ROLE_PERMISSIONS = ROLE_PERMISSIONS
