import pytest

from nodehub.cli.migrate_db import sync_database_url
from nodehub.errors import ConfigError, UnauthorizedError
from nodehub.security import check_admin_key, extract_node_token
from nodehub.settings import Settings


def test_extract_node_token_prefers_header() -> None:
    assert extract_node_token(" tok ", "Bearer other") == "tok"
    assert extract_node_token(None, "Bearer abc") == "abc"
    assert extract_node_token("", "bearer  abc ") == "abc"
    assert extract_node_token(None, "Basic abc") is None
    assert extract_node_token(None, "Bearer ") is None
    assert extract_node_token(None, None) is None


def test_check_admin_key() -> None:
    settings = Settings(admin_key="secret")

    check_admin_key(" secret ", settings)
    with pytest.raises(UnauthorizedError):
        check_admin_key("secret2", settings)
    with pytest.raises(UnauthorizedError):
        check_admin_key(None, settings)
    with pytest.raises(ConfigError):
        check_admin_key("secret", Settings(admin_key=""))


def test_sync_database_url_uses_sync_drivers() -> None:
    assert sync_database_url("postgresql+asyncpg://u:p@db/nodehub") == "postgresql+psycopg://u:p@db/nodehub"
    assert sync_database_url("sqlite+aiosqlite:///nodehub.db") == "sqlite:///nodehub.db"
