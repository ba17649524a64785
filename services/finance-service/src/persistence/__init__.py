"""Persistence primitives for the finance service."""

from persistence.database import (
    DB_URL_ENV_VAR,
    DEFAULT_DB_FILENAME,
    DEFAULT_DB_PATH,
    SessionLocal,
    get_database_url,
    get_engine,
    get_session,
    init_db,
    reset_engine,
)
from persistence.models import AiAnalysis, Base

__all__ = [
    "AiAnalysis",
    "Base",
    "DB_URL_ENV_VAR",
    "DEFAULT_DB_FILENAME",
    "DEFAULT_DB_PATH",
    "SessionLocal",
    "get_database_url",
    "get_engine",
    "get_session",
    "init_db",
    "reset_engine",
]
