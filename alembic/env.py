"""Alembic environment for TableDM.

``init_db()`` passes the application's database URL in ``sqlalchemy.url``.
From the command line the URL comes from DATABASE_URL (``tabledm.config``
loads ``.env``), then from alembic.ini.
"""

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine

from tabledm.config import Config
from tabledm.db.models import Base

config = context.config

if config.config_file_name is not None:
    # Keep the application's loggers alive when init_db() runs migrations
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def _database_url() -> str:
    if os.getenv("DATABASE_URL"):
        return Config.get_database_url()
    return config.get_main_option("sqlalchemy.url") or Config.DATABASE_URL


def run_migrations_offline() -> None:
    """Emit SQL for the migrations without a database connection."""
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,  # SQLite has no real ALTER TABLE
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(_database_url())
    try:
        with engine.connect() as connection:
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                render_as_batch=True,
            )
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
