from __future__ import annotations

import os
import sys
import importlib
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import engine_from_config, pool

# ------------------------------------------------------------------------------
# PYTHONPATH
# ------------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# ------------------------------------------------------------------------------
# Alembic config + logging
# ------------------------------------------------------------------------------
config = context.config
if config.config_file_name and os.path.exists(config.config_file_name):
    try:
        fileConfig(config.config_file_name)
    except Exception as e:
        print(f"[env.py] fileConfig error: {e}", flush=True)

# ------------------------------------------------------------------------------
# Base and model modules, listed explicitly
# ------------------------------------------------------------------------------
from carebell.models.base import Base  # single Base with naming_convention

MODEL_MODULES = [
    "carebell.models.user",
    "carebell.models.reminder",
]
for mod in MODEL_MODULES:
    importlib.import_module(mod)

tables = sorted(Base.metadata.tables.keys())
print("[env.py] tables in Base.metadata:", tables, flush=True)

# fail loudly when a model module did not register
required = {"users", "reminders"}
missing = required.difference(tables)
if missing:
    raise RuntimeError(f"[env.py] Missing tables in Base.metadata: {missing}")


# ------------------------------------------------------------------------------
# DSN: migrations run on a sync driver
# ------------------------------------------------------------------------------
def _to_sync_dsn(dsn: str) -> str:
    if "+asyncpg" in dsn:
        return dsn.replace("+asyncpg", "+psycopg")
    if "+aiosqlite" in dsn:
        return dsn.replace("+aiosqlite", "")
    return dsn


env_url = os.getenv("DATABASE_URL") or os.getenv("POSTGRES_DSN")
if not env_url:
    env_url = "postgresql+psycopg://app:app@db:5432/app"
config.set_main_option("sqlalchemy.url", _to_sync_dsn(env_url))

target_metadata = Base.metadata


# ------------------------------------------------------------------------------
# Migrations
# ------------------------------------------------------------------------------
def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        print(f"[env.py] online migrations, dsn={connection.engine.url!r}", flush=True)
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            compare_server_default=True,
        )
        with context.begin_transaction():
            context.run_migrations()
            print("[env.py] migrations done.", flush=True)


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
