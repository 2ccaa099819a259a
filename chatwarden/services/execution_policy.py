# -*- coding: utf-8 -*-
"""Location: ./chatwarden/services/execution_policy.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

Per-tenant, per-command authorization engine.

Holds one allow-list (``RuleSet``) per (tenant, command) in memory and writes
every mutation through to the durable store. Decisions are deny-by-default:
an actor is allowed only when its user id or one of its groups is listed, or
when no rule set exists and the command declares a permissive default.

Examples:
    >>> from unittest.mock import AsyncMock
    >>> policy = ExecutionPolicy(AsyncMock(), defaults={"help": True})
    >>> policy.loaded
    False
    >>> policy.check("t1", "help", Actor.of("u1"))
    False
"""

# Future
from __future__ import annotations

# Standard
import asyncio
import contextlib
from dataclasses import dataclass
import logging
from typing import Dict, Iterable, Mapping, Optional, Set, Tuple

# First-Party
from chatwarden.errors import AuthorizationDenied, PolicyNotLoadedError, StorageUnavailable, TenantRemovedError
from chatwarden.models import Actor, PolicyChange, RuleSet
from chatwarden.services.storage_service import DurableStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessDecision:
    """Result of an authorization check.

    Attributes:
        allowed: Whether the actor may run the command.
        reason: Short machine friendly explanation.
    """

    allowed: bool
    reason: str


class ExecutionPolicy:
    """Authorization engine with write-through persistence."""

    def __init__(self, store: DurableStore, defaults: Optional[Mapping[str, bool]] = None) -> None:
        """Create an empty, not yet loaded policy.

        Args:
            store: Durable store used for load and write-through.
            defaults: Decision per command name when no rule set exists.
        """
        self._store = store
        self._defaults: Dict[str, bool] = dict(defaults or {})
        self._rules: Dict[str, Dict[str, RuleSet]] = {}
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._purging: Set[str] = set()
        self._generations: Dict[str, int] = {}
        self._loaded = False

    @property
    def loaded(self) -> bool:
        """True once ``load_permissions`` completed."""
        return self._loaded

    def set_defaults(self, defaults: Mapping[str, bool]) -> None:
        """Replace the per-command default decisions.

        Args:
            defaults: Decision per command name when no rule set exists.
        """
        self._defaults = dict(defaults)

    async def load_permissions(self) -> None:
        """Bulk load every rule set from the store.

        Raises:
            StorageUnavailable: If the store cannot be read.
        """
        snapshot = await self._store.load_all_policies()
        self._rules = {tenant: dict(commands) for tenant, commands in snapshot.items()}
        self._loaded = True
        logger.info("Loaded permissions for %d tenants (%d rule sets)", len(self._rules), sum(len(v) for v in self._rules.values()))

    def decide(self, tenant_id: str, command_name: str, actor: Actor) -> AccessDecision:
        """Evaluate an authorization request.

        Args:
            tenant_id: Tenant the command is invoked in.
            command_name: Invoked command.
            actor: Invoking user and its groups.

        Returns:
            AccessDecision: The decision and its reason.
        """
        if not self._loaded:
            logger.warning("Permission check for %s in %s before permissions were loaded; denying", command_name, tenant_id)
            return AccessDecision(False, "not_loaded")
        if tenant_id in self._purging:
            return AccessDecision(False, "tenant_removed")

        rule_set = self._rules.get(tenant_id, {}).get(command_name)
        if rule_set is None:
            if self._defaults.get(command_name, False):
                return AccessDecision(True, "default_allow")
            return AccessDecision(False, "no_rule_set")
        if actor.user_id in rule_set.users:
            return AccessDecision(True, "user_granted")
        if rule_set.grants(actor):
            return AccessDecision(True, "group_granted")
        return AccessDecision(False, "not_granted")

    def check(self, tenant_id: str, command_name: str, actor: Actor) -> bool:
        """Return whether the actor may run the command in the tenant.

        Args:
            tenant_id: Tenant the command is invoked in.
            command_name: Invoked command.
            actor: Invoking user and its groups.

        Returns:
            bool: True if allowed.
        """
        decision = self.decide(tenant_id, command_name, actor)
        if not decision.allowed:
            logger.debug("Denied %s for user %s in %s (%s)", command_name, actor.user_id, tenant_id, decision.reason)
        return decision.allowed

    def authorize(self, tenant_id: str, command_name: str, actor: Actor) -> AccessDecision:
        """Like ``decide``, but raise when the actor is denied.

        Args:
            tenant_id: Tenant the command is invoked in.
            command_name: Invoked command.
            actor: Invoking user and its groups.

        Returns:
            AccessDecision: The allowing decision.

        Raises:
            AuthorizationDenied: Carrying the denial reason.
        """
        decision = self.decide(tenant_id, command_name, actor)
        if not decision.allowed:
            raise AuthorizationDenied(f"{actor.user_id} may not run {command_name} in {tenant_id}", reason=decision.reason)
        return decision

    async def change(self, tenant_id: str, command_name: str, change: PolicyChange) -> RuleSet:
        """Apply an add/remove transaction to one rule set and persist it.

        Additions are applied before removals, so an id present in both ends
        up removed. Applying the same change twice is a no-op the second time.

        Args:
            tenant_id: Tenant id.
            command_name: Command whose rule set changes.
            change: Members to add and remove.

        Returns:
            RuleSet: The rule set after the change.

        Raises:
            PolicyNotLoadedError: If permissions have not been loaded.
            TenantRemovedError: If the tenant is removed before or while
                the change runs.
            StorageUnavailable: If persisting failed; memory is rolled back.
        """
        if not self._loaded:
            raise PolicyNotLoadedError("Permissions are not loaded yet")
        if tenant_id in self._purging:
            raise TenantRemovedError(tenant_id)
        generation = self._generations.get(tenant_id, 0)

        async with self._lock_for(tenant_id, command_name):
            # A removal may have completed while this change waited for the lock
            if tenant_id in self._purging or self._generations.get(tenant_id, 0) != generation:
                raise TenantRemovedError(tenant_id)
            tenant_rules = self._rules.setdefault(tenant_id, {})
            previous = tenant_rules.get(command_name)
            updated = (previous or RuleSet()).apply(change)
            tenant_rules[command_name] = updated
            try:
                await self._store.save_policy(tenant_id, command_name, updated)
            except StorageUnavailable:
                self._restore(tenant_id, command_name, previous)
                logger.error("Rolled back permission change for %s in %s", command_name, tenant_id)
                raise
            # A removal started during the save deletes this row once the lock is released
            if tenant_id in self._purging:
                raise TenantRemovedError(tenant_id)

        logger.info(
            "Permissions for %s in %s: %d users, %d groups",
            command_name,
            tenant_id,
            len(updated.users),
            len(updated.groups),
        )
        return updated

    async def seed_tenant(self, tenant_id: str, command_names: Iterable[str]) -> None:
        """Grant each command to the tenant-wide group of a newly joined tenant.

        Args:
            tenant_id: Tenant id; also the id of its everyone group.
            command_names: Commands to open to everyone.
        """
        self._purging.discard(tenant_id)
        for name in command_names:
            await self.change(tenant_id, name, PolicyChange.grant(groups=[tenant_id]))
        logger.info("Seeded default permissions for tenant %s", tenant_id)

    async def remove_server(self, tenant_id: str) -> None:
        """Delete every rule set of a tenant.

        The tenant is denied for the whole operation and new changes are
        refused. Changes already saving finish first: the removal holds every
        key lock of the tenant before deleting, so no rule set is written back
        after the purge. If the store fails the tenant stays denied so no
        stale grant can be used.

        Args:
            tenant_id: Tenant that left.

        Raises:
            StorageUnavailable: If the durable rules could not be deleted.
        """
        self._purging.add(tenant_id)
        self._generations[tenant_id] = self._generations.get(tenant_id, 0) + 1
        held = {key: lock for key, lock in self._locks.items() if key[0] == tenant_id}
        async with contextlib.AsyncExitStack() as stack:
            for lock in held.values():
                await stack.enter_async_context(lock)
            await self._store.delete_policies(tenant_id)
            self._rules.pop(tenant_id, None)
            for key, lock in held.items():
                if self._locks.get(key) is lock:
                    del self._locks[key]
        self._purging.discard(tenant_id)
        logger.info("Removed permissions of tenant %s", tenant_id)

    def rules_for(self, tenant_id: str) -> Dict[str, RuleSet]:
        """Snapshot of the rule sets of a tenant.

        Args:
            tenant_id: Tenant id.

        Returns:
            Dict[str, RuleSet]: Rule set per command name.
        """
        return dict(self._rules.get(tenant_id, {}))

    def _lock_for(self, tenant_id: str, command_name: str) -> asyncio.Lock:
        """Return the lock serializing mutations of one key."""
        key = (tenant_id, command_name)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _restore(self, tenant_id: str, command_name: str, previous: Optional[RuleSet]) -> None:
        """Put back the rule set that existed before a failed change."""
        tenant_rules = self._rules.setdefault(tenant_id, {})
        if previous is None:
            tenant_rules.pop(command_name, None)
            if not tenant_rules:
                self._rules.pop(tenant_id, None)
        else:
            tenant_rules[command_name] = previous
