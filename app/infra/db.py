from __future__ import annotations

import os
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import create_engine

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg://console:console@db:5432/tenant_console",
)
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_ECHO = os.getenv("DB_ECHO", "").lower() in {"1", "true", "yes"}


def _engine_options(url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"pool_pre_ping": True, "echo": DB_ECHO}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["pool_size"] = DB_POOL_SIZE
    return options


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))


def get_engine() -> Engine:
    return engine


def check_db_ready() -> bool:
    """Round-trip ``SELECT 1``; any database error counts as not ready."""
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return False
    return True
