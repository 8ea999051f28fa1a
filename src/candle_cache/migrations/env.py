"""Alembic environment for the candle_cache schema."""

from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool, text

from candle_cache.config.loader import load_config
from candle_cache.db.base import Base
from candle_cache.db.engine import ensure_psycopg_driver

# Import all table modules so Base.metadata sees them
import candle_cache.db.tables  # noqa: F401
from candle_cache.db.tables.markets import SCHEMA

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

MANAGED_SCHEMA = SCHEMA


def get_url() -> str:
    """Resolve the DB URL the way the worker does.

    ``CANDLE_CACHE_CONFIG`` and ``CANDLE_CACHE_DATABASE_URL`` take precedence
    over ``sqlalchemy.url`` in alembic.ini.
    """
    config_path = os.environ.get("CANDLE_CACHE_CONFIG")
    if config_path or os.environ.get("CANDLE_CACHE_DATABASE_URL"):
        url = load_config(config_path).database.url
    else:
        url = config.get_main_option("sqlalchemy.url")
    return ensure_psycopg_driver(url)


def include_object(obj, name, type_, reflected, compare_to):
    """Only manage tables in our schema."""
    if type_ == "table":
        return obj.schema == MANAGED_SCHEMA
    return True


def run_migrations_offline() -> None:
    """Emit SQL without connecting."""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        include_schemas=True,
        include_object=include_object,
        version_table_schema=MANAGED_SCHEMA,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Connect, make sure the schema exists, then migrate."""
    connectable = create_engine(get_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        connection.execute(text(f"CREATE SCHEMA IF NOT EXISTS {MANAGED_SCHEMA}"))
        connection.commit()

        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            include_schemas=True,
            include_object=include_object,
            version_table_schema=MANAGED_SCHEMA,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
