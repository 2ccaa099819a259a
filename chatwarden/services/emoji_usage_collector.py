# -*- coding: utf-8 -*-
"""Location: ./chatwarden/services/emoji_usage_collector.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

Per-tenant custom emoji usage counters with periodic persistence.

Counts ``<:name:id>`` and ``<a:name:id>`` references in chat messages. The
counters live in memory; one owned background task flushes changed tenants to
the durable store every ``autosave_interval`` seconds, and ``stop()`` performs
a final flush.

Examples:
    >>> from unittest.mock import AsyncMock
    >>> collector = EmojiUsageCollector(AsyncMock())
    >>> collector.observe("t1", "nice <:pog:123> <:pog:123> <a:dance:9>")
    3
    >>> [(u.name, u.count) for u in collector.top("t1")]
    [('pog', 2), ('dance', 1)]
"""

# Future
from __future__ import annotations

# Standard
import asyncio
import logging
import re
from typing import Dict, List, Optional, Set

# First-Party
from chatwarden.errors import StorageUnavailable
from chatwarden.models import EmojiUsage
from chatwarden.services.storage_service import DurableStore

logger = logging.getLogger(__name__)

EMOJI_RE = re.compile(r"<(a?):(\w{2,32}):(\d+)>")


class EmojiUsageCollector:
    """In-memory emoji counters with an owned autosave task."""

    def __init__(self, store: DurableStore, autosave_interval: float = 300.0) -> None:
        """Create an empty collector.

        Args:
            store: Durable store for counters and settings.
            autosave_interval: Seconds between automatic flushes.
        """
        self._store = store
        self.autosave_interval = autosave_interval
        self._stats: Dict[str, Dict[str, EmojiUsage]] = {}
        self._disabled: Set[str] = set()
        self._dirty: Set[str] = set()
        self._task: Optional[asyncio.Task] = None
        self._flush_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        """True while the autosave task is alive."""
        return self._task is not None and not self._task.done()

    async def load(self) -> None:
        """Restore counters and settings from the store.

        Raises:
            StorageUnavailable: If the store cannot be read.
        """
        self._stats = await self._store.load_emoji_stats()
        settings = await self._store.load_emoji_settings()
        self._disabled = {tenant for tenant, enabled in settings.items() if not enabled}
        self._dirty.clear()
        logger.info("Loaded emoji statistics for %d tenants", len(self._stats))

    def is_enabled(self, tenant_id: str) -> bool:
        """Return whether the tenant collects statistics."""
        return tenant_id not in self._disabled

    def observe(self, tenant_id: str, text: str) -> int:
        """Count the custom emoji referenced in a message.

        Args:
            tenant_id: Tenant the message belongs to.
            text: Message text.

        Returns:
            int: Number of emoji references counted.
        """
        if not text or tenant_id in self._disabled:
            return 0
        counted = 0
        for animated, name, emoji_id in EMOJI_RE.findall(text):
            usages = self._stats.setdefault(tenant_id, {})
            usage = usages.get(emoji_id)
            if usage is None:
                usage = usages[emoji_id] = EmojiUsage(emoji_id=emoji_id, name=name, animated=bool(animated))
            usage.name = name
            usage.count += 1
            counted += 1
        if counted:
            self._dirty.add(tenant_id)
        return counted

    def top(self, tenant_id: str, limit: int = 10) -> List[EmojiUsage]:
        """Most used emoji of a tenant, highest count first.

        Args:
            tenant_id: Tenant id.
            limit: Maximum entries.

        Returns:
            List[EmojiUsage]: Usage entries.
        """
        usages = self._stats.get(tenant_id, {}).values()
        return sorted(usages, key=lambda u: (-u.count, u.name))[:limit]

    async def set_enabled(self, tenant_id: str, enabled: bool) -> None:
        """Turn collection on or off for a tenant and persist the choice.

        Args:
            tenant_id: Tenant id.
            enabled: New state.

        Raises:
            StorageUnavailable: If the setting could not be saved.
        """
        await self._store.save_emoji_settings(tenant_id, enabled)
        if enabled:
            self._disabled.discard(tenant_id)
        else:
            self._disabled.add(tenant_id)

    def reset(self, tenant_id: str) -> None:
        """Clear a tenant's counters; the next flush persists the reset."""
        self._stats[tenant_id] = {}
        self._dirty.add(tenant_id)

    async def remove_tenant(self, tenant_id: str) -> None:
        """Forget a tenant that left, in memory and in the store.

        Raises:
            StorageUnavailable: If the store failed.
        """
        self._stats.pop(tenant_id, None)
        self._dirty.discard(tenant_id)
        self._disabled.discard(tenant_id)
        await self._store.delete_emoji_stats(tenant_id)

    async def flush(self) -> int:
        """Persist every tenant changed since the last flush.

        Returns:
            int: Number of tenants written.

        Raises:
            StorageUnavailable: If saving failed; the tenants stay dirty.
        """
        async with self._flush_lock:
            if not self._dirty:
                return 0
            tenants = set(self._dirty)
            snapshot = {
                tenant: {emoji_id: EmojiUsage(u.emoji_id, u.name, u.animated, u.count) for emoji_id, u in self._stats.get(tenant, {}).items()}
                for tenant in tenants
            }
            await self._store.save_emoji_stats(snapshot)
            self._dirty -= tenants
            logger.debug("Flushed emoji statistics for %d tenants", len(tenants))
            return len(tenants)

    def start(self) -> None:
        """Start the autosave task (idempotent)."""
        if self.running:
            return
        self._task = asyncio.create_task(self._autosave_loop())

    async def stop(self) -> None:
        """Cancel the autosave task and flush one last time."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        try:
            await self.flush()
        except StorageUnavailable as exc:
            logger.error("Final emoji statistics flush failed: %s", exc)

    async def _autosave_loop(self) -> None:
        logger.info("Emoji autosave started (every %ss)", self.autosave_interval)
        try:
            while True:
                await asyncio.sleep(self.autosave_interval)
                try:
                    await self.flush()
                except StorageUnavailable as exc:
                    logger.warning("Emoji autosave failed, will retry: %s", exc)
        except asyncio.CancelledError:
            logger.debug("Emoji autosave cancelled")
            raise
        finally:
            logger.info("Emoji autosave stopped")
