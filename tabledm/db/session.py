"""Database engine, sessions and schema setup."""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as SQLAlchemySession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import Config
from ..core.errors import StorageFailure
from .models import Base

logger = logging.getLogger(__name__)

_engine: Engine | None = None
_SessionLocal: sessionmaker | None = None

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def _is_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") == "sqlite:")


def _engine_options(url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": Config.is_debug()}
    if url.startswith("sqlite"):
        # Combat routes run in FastAPI's threadpool
        options["connect_args"] = {"check_same_thread": False}
        if _is_memory_sqlite(url):
            # One shared connection, or each thread would see its own empty database
            options["poolclass"] = StaticPool
    else:
        options.update(pool_size=5, max_overflow=10, pool_pre_ping=True)
    return options


def get_engine() -> Engine:
    """The process-wide engine, created from ``DATABASE_URL`` on first use."""
    global _engine
    if _engine is None:
        url = Config.get_database_url()
        _engine = create_engine(url, **_engine_options(url))
    return _engine


def get_session_factory() -> sessionmaker:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)
    return _SessionLocal


def reset_engine():
    """Dispose the engine and forget the session factory (tests, URL changes)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def init_db():
    """Bring the schema up to date.

    File and server databases are migrated with Alembic, falling back to
    ``create_all`` when the migration environment is missing or broken.
    In-memory SQLite always uses ``create_all``: Alembic would migrate its
    own connection and the schema would vanish with it.
    """
    url = Config.get_database_url()
    if _is_memory_sqlite(url):
        Base.metadata.create_all(bind=get_engine())
        return

    try:
        from alembic import command
        from alembic.config import Config as AlembicConfig

        alembic_cfg = AlembicConfig(str(_PROJECT_ROOT / "alembic.ini"))
        alembic_cfg.set_main_option("script_location", str(_PROJECT_ROOT / "alembic"))
        alembic_cfg.set_main_option("sqlalchemy.url", url)
        command.upgrade(alembic_cfg, "head")
        logger.info(f"Database migrated to head: {url}")
    except Exception as e:
        logger.warning(f"Alembic upgrade failed ({e}); creating tables directly")
        Base.metadata.create_all(bind=get_engine())
        logger.info(f"Database tables created: {url}")


@contextmanager
def storage_session(action: str) -> Generator[SQLAlchemySession, None, None]:
    """A session that commits on success and rolls back on any error.

    Database errors surface as StorageFailure. Domain errors raised inside
    the block propagate as-is.

    Args:
        action: What the block does, for the error message ("save combat state")
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Storage failure during {action}: {e}")
        raise StorageFailure(f"Could not {action}; nothing was saved") from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
