"""
Alembic Environment for CriaPrompt Billing

Runs migrations through the async engine against the URL resolved by
``resolve_database_url`` and keeps Supabase-managed schemas out of
autogenerate.
"""

import asyncio
import os
import sys
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel

# Make ``criaprompt`` importable when alembic runs from backend/
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from criaprompt.infrastructure.db import models  # noqa: E402, F401
from criaprompt.infrastructure.db.database import resolve_database_url  # noqa: E402

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = SQLModel.metadata

# Schemas owned by Supabase itself; never diffed.
SUPABASE_SCHEMAS = {"auth", "storage", "realtime", "extensions", "graphql", "graphql_public"}

# Supabase tables that can show up in ``public`` when reflecting.
SUPABASE_TABLES = {"schema_migrations", "buckets", "objects", "secrets", "users", "identities"}


def include_object(obj, name, type_, reflected, compare_to):
    """Only diff tables this service owns."""
    if type_ != "table":
        return True
    if getattr(obj, "schema", None) in SUPABASE_SCHEMAS:
        return False
    return name not in SUPABASE_TABLES


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        include_object=include_object,
        compare_type=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL without a database connection."""
    _configure(
        url=resolve_database_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_with_connection(connection) -> None:
    _configure(connection=connection, compare_server_default=True)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = create_async_engine(resolve_database_url(), poolclass=pool.NullPool)
    async with engine.connect() as connection:
        await connection.run_sync(_run_with_connection)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
