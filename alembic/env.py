"""Alembic environment for the classwork schema.

DATABASE_URL comes from classwork.core.config, the same source as the
running service.  The service talks to Postgres through asyncpg; Alembic
runs synchronously, so the driver is swapped for psycopg2 here.
"""

from __future__ import annotations

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context
from classwork.core.config import SETTINGS
from classwork.db.engine import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Registers classes, tasks, questions, submissions and answers on Base.metadata.
import classwork.db.tables  # noqa: E402, F401

target_metadata = Base.metadata


def _sync_url() -> str | None:
    if not SETTINGS.database_url:
        return config.get_main_option("sqlalchemy.url")
    return SETTINGS.database_url.replace("postgresql+asyncpg", "postgresql+psycopg2")


def _configure(**kwargs) -> None:
    # compare_type so autogenerate notices Float/Numeric changes on scores
    context.configure(target_metadata=target_metadata, compare_type=True, **kwargs)


def run_migrations_offline() -> None:
    """Render the migration as SQL instead of applying it."""
    _configure(
        url=_sync_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section, {})
    url = _sync_url()
    if url:
        section["sqlalchemy.url"] = url
    engine = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with engine.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
