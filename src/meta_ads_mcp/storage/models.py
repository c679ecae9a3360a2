"""SQLAlchemy ORM models."""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class TokenType(str, enum.Enum):
    USER = "user"
    PAGE = "page"
    SYSTEM_USER = "system_user"
    APP = "app"


class Token(Base):
    """Cached ``debug_token`` result keyed by the SHA-256 of the token."""

    __tablename__ = "tokens"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    type: Mapped[TokenType] = mapped_column(Enum(TokenType, name="token_type"), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(255), nullable=False)
    scopes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    app_id: Mapped[str] = mapped_column(String(64), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    raw_metadata: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)


class KeyValueEntry(Base):
    """Session broker record persisted by the database key-value backend."""

    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on the way back; treat naive values as UTC."""

    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


__all__ = [
    "Base",
    "KeyValueEntry",
    "Token",
    "TokenType",
    "as_utc",
]
