from __future__ import annotations

import logging
import time
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session

from .config import settings

log = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


engine = create_engine(
    settings.database_url,
    echo=settings.log_sql,
    future=True,
    pool_pre_ping=True,
    connect_args={"check_same_thread": False} if "sqlite" in settings.database_url else {},
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@contextmanager
def db_session():
    """Context-manager style session with automatic commit/rollback."""
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ping() -> None:
    """Round-trip to the database. Raises on any connection error."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def connect_with_retry(max_retries: int = 5, delay_seconds: float = 5.0) -> None:
    """Block until the database answers, giving up after ``max_retries`` tries."""
    for attempt in range(1, max_retries + 1):
        try:
            ping()
            log.info("Database connected")
            return
        except OperationalError as exc:
            log.error("Database connection attempt %d failed: %s", attempt, exc)
            if attempt == max_retries:
                raise
            time.sleep(delay_seconds)
