from functools import lru_cache

from nodehub.db import get_sessionmaker
from nodehub.store import DocumentStore, SqlDocumentStore


@lru_cache(maxsize=1)
def _sql_store() -> SqlDocumentStore:
    return SqlDocumentStore(get_sessionmaker())


def get_store() -> DocumentStore:
    # Resolved per request so a missing DATABASE_URL fails the request, not the import.
    return _sql_store()
