from __future__ import annotations

import os
from pathlib import Path

from alembic import command
from alembic.config import Config

from nodehub.observability import configure_logging
from nodehub.settings import get_settings


def sync_database_url(url: str) -> str:
    # App uses async drivers; Alembic uses a sync engine.
    return url.replace("+asyncpg", "+psycopg").replace("+aiosqlite", "")


def _alembic_config(*, sync_url: str) -> Config:
    ini_path = os.getenv("NODEHUB_ALEMBIC_INI") or "alembic.ini"
    path = Path(ini_path)
    if not path.is_absolute():
        path = Path.cwd() / path
    if not path.exists():
        raise RuntimeError(f"alembic.ini not found: {path}")

    cfg = Config(str(path))
    cfg.set_main_option("sqlalchemy.url", sync_url)
    return cfg


def migrate_db() -> None:
    """Apply Alembic migrations up to head (creates the document table on an empty database)."""
    settings = get_settings()
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is required")

    sync_url = sync_database_url(settings.database_url)
    command.upgrade(_alembic_config(sync_url=sync_url), "head")


def main() -> None:
    configure_logging(get_settings().log_level)
    migrate_db()
