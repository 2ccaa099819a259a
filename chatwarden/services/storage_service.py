# -*- coding: utf-8 -*-
"""Location: ./chatwarden/services/storage_service.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

Durable store for policies, custom commands and emoji statistics.

``DurableStore`` is the narrow interface the core depends on. ``SqlAlchemyStore``
implements it on an async SQLAlchemy engine; every driver failure surfaces as
``StorageUnavailable`` so callers handle a single error type.
"""

# Future
from __future__ import annotations

# Standard
import abc
from contextlib import asynccontextmanager
import logging
from typing import AsyncIterator, Dict, List, Mapping, Optional

# Third-Party
from sqlalchemy import delete, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncEngine, AsyncSession

# First-Party
from chatwarden.db import Base, build_engine, build_sessionmaker, CustomCommandRecord, EmojiSettingsRecord, EmojiUsageRecord, PolicyRecord
from chatwarden.errors import StorageUnavailable
from chatwarden.models import CommandKind, CustomCommandDefinition, EmojiUsage, RuleSet

logger = logging.getLogger(__name__)

PolicySnapshot = Dict[str, Dict[str, RuleSet]]
EmojiSnapshot = Dict[str, Dict[str, EmojiUsage]]


class DurableStore(abc.ABC):
    """Storage contract consumed by the policy engine, registry and emoji collector."""

    @abc.abstractmethod
    async def load_all_policies(self) -> PolicySnapshot:
        """Return every rule set keyed by tenant then command."""

    @abc.abstractmethod
    async def save_policy(self, tenant_id: str, command_name: str, rule_set: RuleSet) -> None:
        """Insert or replace the rule set of one (tenant, command)."""

    @abc.abstractmethod
    async def delete_policies(self, tenant_id: str) -> None:
        """Delete every rule set of a tenant."""

    @abc.abstractmethod
    async def load_all_custom_commands(self) -> List[CustomCommandDefinition]:
        """Return every custom command of every tenant."""

    @abc.abstractmethod
    async def upsert_custom_command(self, definition: CustomCommandDefinition) -> None:
        """Insert or replace one custom command."""

    @abc.abstractmethod
    async def delete_custom_command(self, tenant_id: str, name: str) -> bool:
        """Delete one custom command; return False if it did not exist."""

    @abc.abstractmethod
    async def delete_custom_commands(self, tenant_id: str) -> int:
        """Delete every custom command of a tenant; return how many were removed."""

    @abc.abstractmethod
    async def load_emoji_stats(self) -> EmojiSnapshot:
        """Return persisted emoji counters keyed by tenant then emoji id."""

    @abc.abstractmethod
    async def save_emoji_stats(self, stats: Mapping[str, Mapping[str, EmojiUsage]]) -> None:
        """Persist the given emoji counters (tenants absent from ``stats`` are untouched)."""

    @abc.abstractmethod
    async def delete_emoji_stats(self, tenant_id: str) -> None:
        """Delete counters and settings of a tenant."""

    @abc.abstractmethod
    async def load_emoji_settings(self) -> Dict[str, bool]:
        """Return the per-tenant collector enabled flags."""

    @abc.abstractmethod
    async def save_emoji_settings(self, tenant_id: str, enabled: bool) -> None:
        """Persist the collector enabled flag of a tenant."""


class SqlAlchemyStore(DurableStore):
    """``DurableStore`` backed by an async SQLAlchemy engine.

    Examples:
        >>> store = SqlAlchemyStore("sqlite+aiosqlite://")
        >>> store.connected
        False
    """

    def __init__(self, database_url: str, echo: bool = False, engine: Optional[AsyncEngine] = None) -> None:
        """Initialize the store without connecting.

        Args:
            database_url: SQLAlchemy async URL.
            echo: Echo SQL statements.
            engine: Pre-built engine (tests); ``database_url`` is then informational.
        """
        self.database_url = database_url
        self._echo = echo
        self._engine: Optional[AsyncEngine] = engine
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None
        self._connected = False

    @property
    def connected(self) -> bool:
        """True once ``connect`` succeeded."""
        return self._connected

    async def connect(self) -> None:
        """Create tables and probe the connection.

        Raises:
            StorageUnavailable: If the database cannot be reached.
        """
        try:
            if self._engine is None:
                self._engine = build_engine(self.database_url, echo=self._echo)
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Storage not available at %s: %s", self._safe_url(), exc)
            raise StorageUnavailable(f"Storage not available: {exc}", operation="connect") from exc
        self._sessionmaker = build_sessionmaker(self._engine)
        self._connected = True
        logger.info("Connected to storage at %s", self._safe_url())

    async def close(self) -> None:
        """Dispose of the engine."""
        if self._engine is not None:
            await self._engine.dispose()
        self._connected = False
        self._sessionmaker = None

    # ---------------------------------------------------------------------------
    # Policies
    # ---------------------------------------------------------------------------

    async def load_all_policies(self) -> PolicySnapshot:
        """Return every rule set keyed by tenant then command.

        Returns:
            PolicySnapshot: Nested mapping of rule sets.
        """
        snapshot: PolicySnapshot = {}
        async with self._session("load_all_policies") as session:
            rows = (await session.execute(select(PolicyRecord))).scalars().all()
            for row in rows:
                snapshot.setdefault(row.tenant_id, {})[row.command_name] = RuleSet(users=frozenset(row.users or []), groups=frozenset(row.groups or []))
        logger.debug("Loaded %d policy rule sets", sum(len(v) for v in snapshot.values()))
        return snapshot

    async def save_policy(self, tenant_id: str, command_name: str, rule_set: RuleSet) -> None:
        """Insert or replace the rule set of one (tenant, command).

        Args:
            tenant_id: Tenant id.
            command_name: Command name.
            rule_set: Complete rule set to store.
        """
        async with self._session("save_policy") as session:
            record = (await session.execute(select(PolicyRecord).where(PolicyRecord.tenant_id == tenant_id, PolicyRecord.command_name == command_name))).scalar_one_or_none()
            members = rule_set.to_dict()
            if record is None:
                session.add(PolicyRecord(tenant_id=tenant_id, command_name=command_name, users=members["users"], groups=members["groups"]))
            else:
                record.users = members["users"]
                record.groups = members["groups"]

    async def delete_policies(self, tenant_id: str) -> None:
        """Delete every rule set of a tenant.

        Args:
            tenant_id: Tenant id.
        """
        async with self._session("delete_policies") as session:
            await session.execute(delete(PolicyRecord).where(PolicyRecord.tenant_id == tenant_id))

    # ---------------------------------------------------------------------------
    # Custom commands
    # ---------------------------------------------------------------------------

    async def load_all_custom_commands(self) -> List[CustomCommandDefinition]:
        """Return every custom command of every tenant.

        Returns:
            List[CustomCommandDefinition]: Definitions ordered by tenant and name.
        """
        async with self._session("load_all_custom_commands") as session:
            rows = (await session.execute(select(CustomCommandRecord).order_by(CustomCommandRecord.tenant_id, CustomCommandRecord.name))).scalars().all()
            return [
                CustomCommandDefinition(tenant_id=row.tenant_id, name=row.name, body=row.body, kind=CommandKind(row.kind), created_by=row.created_by)
                for row in rows
            ]

    async def upsert_custom_command(self, definition: CustomCommandDefinition) -> None:
        """Insert or replace one custom command.

        Args:
            definition: Command to store.
        """
        async with self._session("upsert_custom_command") as session:
            record = (
                await session.execute(
                    select(CustomCommandRecord).where(CustomCommandRecord.tenant_id == definition.tenant_id, CustomCommandRecord.name == definition.name)
                )
            ).scalar_one_or_none()
            if record is None:
                session.add(
                    CustomCommandRecord(
                        tenant_id=definition.tenant_id,
                        name=definition.name,
                        kind=definition.kind.value,
                        body=definition.body,
                        created_by=definition.created_by,
                    )
                )
            else:
                record.kind = definition.kind.value
                record.body = definition.body
                record.created_by = definition.created_by

    async def delete_custom_command(self, tenant_id: str, name: str) -> bool:
        """Delete one custom command.

        Args:
            tenant_id: Tenant id.
            name: Command name.

        Returns:
            bool: False if the command did not exist.
        """
        async with self._session("delete_custom_command") as session:
            result = await session.execute(delete(CustomCommandRecord).where(CustomCommandRecord.tenant_id == tenant_id, CustomCommandRecord.name == name))
            return bool(result.rowcount)

    async def delete_custom_commands(self, tenant_id: str) -> int:
        """Delete every custom command of a tenant.

        Args:
            tenant_id: Tenant id.

        Returns:
            int: Number of deleted commands.
        """
        async with self._session("delete_custom_commands") as session:
            result = await session.execute(delete(CustomCommandRecord).where(CustomCommandRecord.tenant_id == tenant_id))
            return int(result.rowcount or 0)

    # ---------------------------------------------------------------------------
    # Emoji statistics
    # ---------------------------------------------------------------------------

    async def load_emoji_stats(self) -> EmojiSnapshot:
        """Return persisted emoji counters.

        Returns:
            EmojiSnapshot: Counters keyed by tenant then emoji id.
        """
        snapshot: EmojiSnapshot = {}
        async with self._session("load_emoji_stats") as session:
            rows = (await session.execute(select(EmojiUsageRecord))).scalars().all()
            for row in rows:
                snapshot.setdefault(row.tenant_id, {})[row.emoji_id] = EmojiUsage(emoji_id=row.emoji_id, name=row.name, animated=row.animated, count=row.count)
        return snapshot

    async def save_emoji_stats(self, stats: Mapping[str, Mapping[str, EmojiUsage]]) -> None:
        """Replace the stored counters of every tenant present in ``stats``.

        Args:
            stats: Counters keyed by tenant then emoji id.
        """
        async with self._session("save_emoji_stats") as session:
            for tenant_id, usages in stats.items():
                await session.execute(delete(EmojiUsageRecord).where(EmojiUsageRecord.tenant_id == tenant_id))
                for usage in usages.values():
                    session.add(EmojiUsageRecord(tenant_id=tenant_id, emoji_id=usage.emoji_id, name=usage.name, animated=usage.animated, count=usage.count))

    async def delete_emoji_stats(self, tenant_id: str) -> None:
        """Delete counters and settings of a tenant.

        Args:
            tenant_id: Tenant id.
        """
        async with self._session("delete_emoji_stats") as session:
            await session.execute(delete(EmojiUsageRecord).where(EmojiUsageRecord.tenant_id == tenant_id))
            await session.execute(delete(EmojiSettingsRecord).where(EmojiSettingsRecord.tenant_id == tenant_id))

    async def load_emoji_settings(self) -> Dict[str, bool]:
        """Return per-tenant enabled flags.

        Returns:
            Dict[str, bool]: Enabled flag keyed by tenant.
        """
        async with self._session("load_emoji_settings") as session:
            rows = (await session.execute(select(EmojiSettingsRecord))).scalars().all()
            return {row.tenant_id: row.enabled for row in rows}

    async def save_emoji_settings(self, tenant_id: str, enabled: bool) -> None:
        """Persist the enabled flag of a tenant.

        Args:
            tenant_id: Tenant id.
            enabled: Whether emoji usage is collected.
        """
        async with self._session("save_emoji_settings") as session:
            record = await session.get(EmojiSettingsRecord, tenant_id)
            if record is None:
                session.add(EmojiSettingsRecord(tenant_id=tenant_id, enabled=enabled))
            else:
                record.enabled = enabled

    # ---------------------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------------------

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Yield a session inside a transaction, mapping failures to ``StorageUnavailable``.

        Args:
            operation: Operation name for error reporting.

        Yields:
            AsyncSession: Session committed on success, rolled back on error.

        Raises:
            StorageUnavailable: If the store is not connected or the driver fails.
        """
        if self._sessionmaker is None:
            raise StorageUnavailable("Storage is not connected", operation=operation)
        try:
            async with self._sessionmaker() as session:
                async with session.begin():
                    yield session
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Storage operation %s failed: %s", operation, exc)
            raise StorageUnavailable(f"Storage operation '{operation}' failed", operation=operation) from exc

    def _safe_url(self) -> str:
        """Database URL with any password masked."""
        if "@" not in self.database_url:
            return self.database_url
        scheme, _, rest = self.database_url.partition("://")
        return f"{scheme}://***@{rest.split('@', 1)[1]}"
