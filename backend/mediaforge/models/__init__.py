"""
Job store: engine, session factory and table bootstrap
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from mediaforge.config.settings import settings


SQLITE_PREFIX = "sqlite:///"


def build_engine(database_url: str) -> Engine:
    """Engine for ``database_url``; SQLite files get their directory created"""
    if database_url.startswith(SQLITE_PREFIX) and ":memory:" not in database_url:
        Path(database_url[len(SQLITE_PREFIX):]).parent.mkdir(parents=True, exist_ok=True)
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    return create_engine(database_url, connect_args=connect_args, pool_pre_ping=True)


engine = build_engine(settings.database_url)

Base = declarative_base()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Iterator[Session]:
    """Request-scoped session for FastAPI dependencies"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for code running outside a request (RQ tasks, scripts)"""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    from mediaforge.models import job, asset  # noqa: F401

    Base.metadata.create_all(bind=engine)
