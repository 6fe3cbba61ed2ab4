from __future__ import annotations

import json
import uuid
from typing import Any, Callable, Protocol

from sqlalchemy import delete
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nodehub.errors import ConfigError
from nodehub.models import Document, utcnow


class KEY:
    IDX_NODES = "idx:nodes"
    IDX_TEMPLATES = "idx:templates"
    IDX_SUBSCRIPTIONS = "idx:subscriptions"
    IDX_RELEASES = "idx:releases"

    @staticmethod
    def node(node_id: str) -> str:
        return f"node:{node_id}"

    @staticmethod
    def template(template_id: str) -> str:
        return f"template:{template_id}"

    @staticmethod
    def template_override(template_id: str) -> str:
        return f"template_override:{template_id}"

    @staticmethod
    def subscription(token: str) -> str:
        return f"subscription:{token}"

    @staticmethod
    def release(release_id: str) -> str:
        return f"release:{release_id}"


class DocumentStore(Protocol):
    """
    Key -> JSON document mapping.

    Every call is atomic on its own key only. There are no transactions across keys or calls:
    two concurrent writers of the same document race and the last write wins.
    """

    async def get(self, key: str) -> Any | None: ...

    async def put(self, key: str, value: Any) -> None: ...

    async def delete(self, key: str) -> None: ...


def _roundtrip(value: Any) -> Any:
    return json.loads(json.dumps(value))


class MemoryDocumentStore:
    def __init__(self) -> None:
        self._docs: dict[str, str] = {}

    async def get(self, key: str) -> Any | None:
        raw = self._docs.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def put(self, key: str, value: Any) -> None:
        self._docs[key] = json.dumps(value)

    async def delete(self, key: str) -> None:
        self._docs.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._docs)


_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def upsert_statement(dialect_name: str, key: str, value: Any):
    """Single-statement insert-or-replace, so concurrent first writes of a key cannot collide."""
    insert = _INSERT_BY_DIALECT.get(dialect_name)
    if insert is None:
        raise ConfigError(f"Unsupported database dialect: {dialect_name}")
    stmt = insert(Document).values(key=key, value=value, updated_at=utcnow())
    return stmt.on_conflict_do_update(
        index_elements=[Document.key],
        set_={"value": stmt.excluded["value"], "updated_at": stmt.excluded["updated_at"]},
    )


class SqlDocumentStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def get(self, key: str) -> Any | None:
        async with self._sessionmaker() as session:
            row = await session.get(Document, key)
            if row is None:
                return None
            return _roundtrip(row.value)

    async def put(self, key: str, value: Any) -> None:
        async with self._sessionmaker() as session:
            stmt = upsert_statement(session.get_bind().dialect.name, key, _roundtrip(value))
            await session.execute(stmt)
            await session.commit()

    async def delete(self, key: str) -> None:
        async with self._sessionmaker() as session:
            await session.execute(delete(Document).where(Document.key == key))
            await session.commit()


def create_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def create_token() -> str:
    return uuid.uuid4().hex


async def get_json(store: DocumentStore, key: str) -> dict | None:
    value = await store.get(key)
    if isinstance(value, dict):
        return value
    return None


async def read_index(store: DocumentStore, key: str) -> list[dict]:
    rows = await store.get(key)
    if not isinstance(rows, list):
        return []
    return [row for row in rows if isinstance(row, dict) and row.get("id")]


async def write_index(store: DocumentStore, key: str, rows: list[dict]) -> None:
    await store.put(key, rows)


async def index_upsert(store: DocumentStore, key: str, row: dict) -> None:
    rows = [item for item in await read_index(store, key) if item.get("id") != row["id"]]
    rows.append(row)
    await write_index(store, key, rows)


async def index_remove(store: DocumentStore, key: str, item_id: str) -> None:
    rows = [item for item in await read_index(store, key) if item.get("id") != item_id]
    await write_index(store, key, rows)


async def hydrate_by_index(store: DocumentStore, index_key: str, key_factory: Callable[[str], str]) -> list[dict]:
    docs: list[dict] = []
    for row in await read_index(store, index_key):
        doc = await get_json(store, key_factory(str(row["id"])))
        if doc is not None:
            docs.append(doc)
    return docs
