# -*- coding: utf-8 -*-
"""Location: ./chatwarden/db.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

SQLAlchemy ORM models and engine helpers for chatwarden persistence.

Tables:
- ``policy_rules``: one allow-list per (tenant, command)
- ``custom_commands``: tenant-defined text or script commands
- ``emoji_usage`` / ``emoji_settings``: emoji statistics collaborator
"""

# Standard
from datetime import datetime, timezone
from typing import List

# Third-Party
from sqlalchemy import Boolean, DateTime, Index, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool


def utc_now() -> datetime:
    """Return the current UTC time.

    Returns:
        datetime: Timezone-aware timestamp.
    """
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for chatwarden tables."""


class PolicyRecord(Base):
    """Durable form of a permission rule set."""

    __tablename__ = "policy_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    command_name: Mapped[str] = mapped_column(String(64), nullable=False)
    users: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    groups: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (UniqueConstraint("tenant_id", "command_name", name="uq_policy_tenant_command"),)

    def __repr__(self) -> str:
        return f"<PolicyRecord(tenant={self.tenant_id}, command={self.command_name})>"


class CustomCommandRecord(Base):
    """Tenant-defined command."""

    __tablename__ = "custom_commands"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False, default="text")
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_custom_command_tenant_name"),)

    def __repr__(self) -> str:
        return f"<CustomCommandRecord(tenant={self.tenant_id}, name={self.name}, kind={self.kind})>"


class EmojiUsageRecord(Base):
    """Usage counter of one custom emoji in one tenant."""

    __tablename__ = "emoji_usage"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    emoji_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    animated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "emoji_id", name="uq_emoji_usage_tenant_emoji"),
        Index("idx_emoji_usage_tenant_count", "tenant_id", "count"),
    )


class EmojiSettingsRecord(Base):
    """Per-tenant emoji collector settings."""

    __tablename__ = "emoji_settings"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL.

    In-memory SQLite URLs share one connection so every session sees the same
    database.

    Args:
        database_url: SQLAlchemy async URL, e.g. ``sqlite+aiosqlite:///./chatwarden.db``.
        echo: Echo SQL statements.

    Returns:
        AsyncEngine: The engine.
    """
    if database_url.startswith("sqlite") and (":memory:" in database_url or database_url.rstrip("/").endswith("aiosqlite:")):
        return create_async_engine(database_url, echo=echo, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_async_engine(database_url, echo=echo, pool_pre_ping=True)


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to the engine.

    Args:
        engine: Async engine.

    Returns:
        async_sessionmaker: Factory producing ``AsyncSession`` objects.
    """
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
