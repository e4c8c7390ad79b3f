"""Database engine and session management for SessionGate."""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from dotenv import load_dotenv

# Load environment from .env if available so database configuration is discoverable.
load_dotenv()

LOGGER = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base declarative class used by all ORM models."""


def _build_sqlite_url() -> str:
    """Construct the default SQLite connection string."""
    sqlite_path_env = os.getenv("SESSIONGATE_SQLITE_PATH", "data/sessiongate.db")
    if sqlite_path_env == ":memory:":
        return "sqlite:///:memory:"

    project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    sqlite_path = os.path.expanduser(sqlite_path_env)
    if not os.path.isabs(sqlite_path):
        sqlite_path = os.path.normpath(os.path.join(project_root, sqlite_path))

    directory = os.path.dirname(sqlite_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    return f"sqlite:///{sqlite_path}"


def _build_database_url() -> str:
    """Return the configured database URL, falling back to a local SQLite file."""
    url = os.getenv("SESSIONGATE_DB_URL", "").strip()
    if url:
        return url
    return _build_sqlite_url()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:  # pragma: no cover - driver hook
    # SQLite ignores ON DELETE CASCADE unless enabled per connection.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str, **overrides: Any) -> Engine:
    """Create an engine with the options every SessionGate database needs."""
    engine_kwargs: Dict[str, Any] = {
        "future": True,
        "pool_pre_ping": True,
    }
    if url.startswith("sqlite"):
        # SQLite requires disabling same-thread checks for multi-threaded FastAPI workers.
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    engine_kwargs.update(overrides)

    built = create_engine(url, **engine_kwargs)
    if url.startswith("sqlite"):
        event.listen(built, "connect", _enable_sqlite_foreign_keys)
    return built


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        bind=bind,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
        future=True,
    )


DATABASE_URL = _build_database_url()
engine = build_engine(DATABASE_URL)
SessionLocal = build_session_factory(engine)


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""
    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_database(bind: Optional[Engine] = None) -> None:
    """Ensure all ORM tables are created in the configured database."""
    # Import models within the function to avoid circular imports.
    from .auth import models  # noqa: F401  # pylint: disable=unused-import

    target = bind or engine
    if target.dialect.name == "sqlite" and target.url.database not in (None, "", ":memory:"):
        with target.begin() as conn:
            # WAL lets readers proceed while a registration transaction is writing.
            conn.execute(text("PRAGMA journal_mode=WAL"))
            conn.execute(text("PRAGMA synchronous=NORMAL"))

    Base.metadata.create_all(bind=target)
    LOGGER.debug("Database schema ensured on %s", target.url.render_as_string(hide_password=True))
