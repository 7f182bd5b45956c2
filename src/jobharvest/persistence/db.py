"""
Engine and session handling for the job store.

Engines are cached per URL so the CLI commands and the orchestrator share
one pool. SQLite files get WAL journaling; the orchestrator reads from
worker threads while a commit may be in flight.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

DEFAULT_DATABASE_URL = "sqlite:///data/jobharvest.db"

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA busy_timeout=5000",
)

_engines: dict[str, Engine] = {}
_sessionmakers: dict[Engine, sessionmaker[Session]] = {}


def _apply_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    for pragma in SQLITE_PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


def create_db_engine(url: str = DEFAULT_DATABASE_URL, echo: bool = False, pool_size: int = 5) -> Engine:
    """Build a fresh engine; *pool_size* only applies to server databases."""
    parsed = make_url(url)

    if parsed.get_backend_name() != "sqlite":
        return create_engine(url, echo=echo, pool_size=pool_size, max_overflow=10, pool_pre_ping=True)

    if parsed.database and parsed.database != ":memory:":
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    event.listen(engine, "connect", _apply_sqlite_pragmas)
    return engine


def get_engine(url: str = DEFAULT_DATABASE_URL, echo: bool = False, pool_size: int = 5) -> Engine:
    """Cached engine for *url*; options only matter on first use."""
    engine = _engines.get(url)
    if engine is None:
        engine = _engines[url] = create_db_engine(url, echo=echo, pool_size=pool_size)
    return engine


def _sessionmaker(engine: Engine) -> sessionmaker[Session]:
    factory = _sessionmakers.get(engine)
    if factory is None:
        factory = _sessionmakers[engine] = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return factory


@contextmanager
def get_session(engine: Engine | None = None) -> Generator[Session, None, None]:
    """Transactional scope: commit on success, roll back on any error."""
    session = _sessionmaker(engine or get_engine())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine | None = None) -> None:
    Base.metadata.create_all(bind=engine or get_engine())


def drop_db(engine: Engine | None = None) -> None:
    """Drop every table. Destroys all stored postings."""
    Base.metadata.drop_all(bind=engine or get_engine())


def dispose_engines() -> None:
    """Close all cached pools."""
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()
    _sessionmakers.clear()
