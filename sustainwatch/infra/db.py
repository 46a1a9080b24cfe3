from __future__ import annotations

import logging
import os

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import create_engine

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg://sustainwatch:sustainwatch@db:5432/sustainwatch",
)
DB_ECHO = os.getenv("DB_ECHO", "").lower() in {"1", "true", "yes"}

logger = logging.getLogger(__name__)


def _build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # sync endpoints run on worker threads
        return create_engine(url, echo=DB_ECHO, connect_args={"check_same_thread": False})
    return create_engine(url, echo=DB_ECHO, pool_pre_ping=True)


engine = _build_engine(DATABASE_URL)


def get_engine() -> Engine:
    return engine


def check_db_ready() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("database readiness check failed for %s", engine.url.render_as_string(hide_password=True))
        return False
    return True
