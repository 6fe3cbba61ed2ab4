from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine
from sqlalchemy import pool
from sqlalchemy import text

config = context.config

if config.config_file_name is not None:
    # Keep application loggers alive when migrations run inside the API process.
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# Import models so metadata is populated for autogenerate.
from nodehub.cli.migrate_db import sync_database_url  # noqa: E402
from nodehub.db import Base  # noqa: E402
import nodehub.models  # noqa: F401,E402

target_metadata = Base.metadata

# Prevent concurrent migrations when several API replicas start at the same time.
MIGRATION_ADVISORY_LOCK_KEY = 61840217


def _sync_database_url() -> str:
    url = config.get_main_option("sqlalchemy.url") or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required for alembic")
    return sync_database_url(url)


def _include_object(object_, name, type_, reflected, compare_to):  # noqa: ANN001, ANN202
    # Tables created outside NodeHub metadata are never dropped by autogenerate.
    return not (type_ == "table" and reflected and compare_to is None)


def run_migrations_offline() -> None:
    url = _sync_database_url()
    context.configure(
        url=url,
        include_object=_include_object,
        render_as_batch=url.startswith("sqlite"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(_sync_database_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        if connection.dialect.name == "postgresql":
            # Transaction-scoped advisory lock, released on commit/rollback.
            connection.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": MIGRATION_ADVISORY_LOCK_KEY})

        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            include_object=_include_object,
            # SQLite cannot ALTER most columns in place.
            render_as_batch=connection.dialect.name == "sqlite",
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
