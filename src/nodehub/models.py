from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from nodehub.db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Document(Base):
    """One JSON document per key (node, template, override, subscription, release, index)."""

    __tablename__ = "document"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[dict | list] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
