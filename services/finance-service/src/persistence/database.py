"""
Engine and session plumbing for the analysis store.

The engine is built on first use from `FINANCE_DB_URL` (or a SQLite file under
the service's `data/` directory), so importing this module never touches the
database. `reset_engine` drops the cached engine when the URL changes.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, URL, make_url
from sqlalchemy.orm import Session, sessionmaker

DB_URL_ENV_VAR = "FINANCE_DB_URL"
DEFAULT_DB_FILENAME = "finance.db"
DEFAULT_DB_PATH = Path(__file__).resolve().parents[2] / "data" / DEFAULT_DB_FILENAME

# Unbound; each session is handed the current engine when it is opened.
SessionLocal = sessionmaker(autoflush=False, expire_on_commit=False)

_engine: Engine | None = None


def get_database_url() -> str:
    return os.getenv(DB_URL_ENV_VAR) or f"sqlite:///{DEFAULT_DB_PATH}"


def _engine_kwargs(url: URL) -> Dict[str, Any]:
    if not url.drivername.startswith("sqlite"):
        return {"pool_pre_ping": True}

    if url.database and url.database != ":memory:":
        Path(url.database).expanduser().absolute().parent.mkdir(parents=True, exist_ok=True)
    # Request handlers and the advice worker threads share one engine.
    return {"connect_args": {"check_same_thread": False}}


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        url = make_url(get_database_url())
        _engine = create_engine(url, **_engine_kwargs(url))
    return _engine


def reset_engine() -> None:
    """Dispose the cached engine; the next `get_engine` call re-reads the URL."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None


def get_session() -> Iterator[Session]:
    with SessionLocal(bind=get_engine()) as session:
        yield session


def init_db() -> None:
    from persistence.models import Base

    Base.metadata.create_all(get_engine())
