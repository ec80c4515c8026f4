"""Alembic environment for the instaflow schema.

Migrations are hand-written SQL (op.execute); there is no SQLAlchemy
metadata and autogenerate is not used.
"""

from __future__ import annotations

import os
import sys
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

# Make `migrations.env_helpers` importable when alembic runs from the repo root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from migrations.env_helpers import get_database_url  # noqa: E402

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _run(**options) -> None:
    context.configure(target_metadata=None, transaction_per_migration=True, **options)
    with context.begin_transaction():
        context.run_migrations()


def run_offline() -> None:
    """Emit SQL to stdout instead of connecting."""
    _run(url=get_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})


def run_online() -> None:
    settings = dict(config.get_section(config.config_ini_section) or {})
    settings["sqlalchemy.url"] = get_database_url()
    engine = engine_from_config(settings, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with engine.connect() as connection:
        _run(connection=connection)


if context.is_offline_mode():
    run_offline()
else:
    run_online()
