"""Alembic environment for the catalog database.

The URL always comes from ``catalog_sync.config.Settings.database_url`` so
that migrations and the app hit the same database. Online migrations run on
the async driver the app uses (asyncpg or aiosqlite).
"""

import asyncio
from logging.config import fileConfig
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from alembic import context
from catalog_sync.config import get_settings
from catalog_sync.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# libpq options that asyncpg does not understand
LIBPQ_ONLY_PARAMS = ("sslmode", "channel_binding", "options")


def _database_url() -> str:
    url = get_settings().database_url
    parsed = urlparse(url)
    if not parsed.scheme.startswith("postgresql"):
        return url

    params = {k: v for k, v in parse_qs(parsed.query).items() if k not in LIBPQ_ONLY_PARAMS}
    return urlunparse(parsed._replace(query=urlencode(params, doseq=True)))


DATABASE_URL = _database_url()
config.set_main_option("sqlalchemy.url", DATABASE_URL)

MIGRATION_OPTIONS = {
    "target_metadata": Base.metadata,
    "compare_type": True,
    # SQLite can only change constraints by rebuilding the table
    "render_as_batch": DATABASE_URL.startswith("sqlite"),
}


def run_migrations_offline() -> None:
    """Emit SQL to stdout without connecting."""
    context.configure(
        url=DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **MIGRATION_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_with_connection(connection: Connection) -> None:
    context.configure(connection=connection, **MIGRATION_OPTIONS)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = create_async_engine(DATABASE_URL, poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_run_with_connection)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
