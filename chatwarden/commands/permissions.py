# -*- coding: utf-8 -*-
"""Location: ./chatwarden/commands/permissions.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

``perm`` built-in: edit who may run a built-in command.

Usage:
    perm allow <command> <targets...>
    perm deny <command> <targets...>
    perm reset <command>
    perm list [command]

Targets are user mentions (``<@id>``, ``<@!id>``), group mentions (``<@&id>``),
``everyone`` (the tenant-wide group), or explicit ``user:<id>`` / ``group:<id>``.

Examples:
    >>> members = parse_targets(["<@1>", "<@&2>", "everyone", "user:3"], tenant_id="9")
    >>> sorted(members.users), sorted(members.groups)
    (['1', '3'], ['2', '9'])
"""

# Standard
import re
from typing import Iterable, List, Optional, Set

# First-Party
from chatwarden.errors import CommandUsageError
from chatwarden.models import MemberSet, PolicyChange, RuleSet
from chatwarden.services.command_registry import BuiltinCommandSpec, CommandContext

_USER_RE = re.compile(r"^<@!?(\d+)>$")
_GROUP_RE = re.compile(r"^<@&(\d+)>$")
_EXPLICIT_RE = re.compile(r"^(user|group):(\w+)$", re.IGNORECASE)

USAGE = "perm allow|deny <command> <targets...> | perm reset <command> | perm list [command]"


def parse_targets(tokens: Iterable[str], tenant_id: str) -> MemberSet:
    """Turn target tokens into a member set.

    Args:
        tokens: Mentions or explicit ids.
        tenant_id: Tenant id, used for ``everyone``.

    Returns:
        MemberSet: Named users and groups.

    Raises:
        CommandUsageError: For a token that is not a valid target.
    """
    users: Set[str] = set()
    groups: Set[str] = set()
    for token in tokens:
        if token.lower() in ("everyone", "@everyone"):
            groups.add(tenant_id)
        elif match := _USER_RE.match(token):
            users.add(match.group(1))
        elif match := _GROUP_RE.match(token):
            groups.add(match.group(1))
        elif match := _EXPLICIT_RE.match(token):
            (users if match.group(1).lower() == "user" else groups).add(match.group(2))
        else:
            raise CommandUsageError(f"Invalid target '{token}'")
    return MemberSet.of(users, groups)


def describe(rule_set: RuleSet, tenant_id: str) -> str:
    """Render a rule set with mentions.

    Args:
        rule_set: Rule set to render.
        tenant_id: Tenant id, shown as ``everyone``.

    Returns:
        str: Human readable members.
    """
    members = [f"<@{u}>" for u in sorted(rule_set.users)]
    members += ["everyone" if g == tenant_id else f"<@&{g}>" for g in sorted(rule_set.groups)]
    return ", ".join(members) if members else "nobody"


def _require_builtin(context: CommandContext, name: str) -> None:
    if context.services.registry.builtin(name) is None:
        raise CommandUsageError(f"Unknown built-in command '{name}'")


async def _apply(context: CommandContext, parts: List[str], allow: bool) -> str:
    if len(parts) < 3:
        raise CommandUsageError(f"Usage: perm {parts[0]} <command> <targets...>")
    command = parts[1]
    _require_builtin(context, command)
    members = parse_targets(parts[2:], context.tenant_id)
    change = PolicyChange(add=members) if allow else PolicyChange(remove=members)
    updated = await context.services.policy.change(context.tenant_id, command, change)
    return f"`{command}` is allowed for: {describe(updated, context.tenant_id)}"


async def _reset(context: CommandContext, parts: List[str]) -> str:
    if len(parts) < 2:
        raise CommandUsageError("Usage: perm reset <command>")
    command = parts[1]
    _require_builtin(context, command)
    policy = context.services.policy
    current = policy.rules_for(context.tenant_id).get(command, RuleSet())
    await policy.change(context.tenant_id, command, PolicyChange(remove=MemberSet(users=current.users, groups=current.groups)))
    return f"`{command}` is allowed for: nobody"


def _list(context: CommandContext, parts: List[str]) -> str:
    rules = context.services.policy.rules_for(context.tenant_id)
    if len(parts) > 1:
        _require_builtin(context, parts[1])
        rules = {parts[1]: rules.get(parts[1], RuleSet())}
    if not rules:
        return "No permissions configured"
    return "\n".join(f"`{name}`: {describe(rule_set, context.tenant_id)}" for name, rule_set in sorted(rules.items()))


async def handle_perm(context: CommandContext) -> Optional[str]:
    """Dispatch a ``perm`` sub-command."""
    parts = context.invocation.argv
    if not parts:
        raise CommandUsageError(f"Usage: {USAGE}")
    action = parts[0].lower()
    if action in ("allow", "grant"):
        return await _apply(context, parts, allow=True)
    if action in ("deny", "revoke"):
        return await _apply(context, parts, allow=False)
    if action == "reset":
        return await _reset(context, parts)
    if action == "list":
        return _list(context, parts)
    raise CommandUsageError(f"Unknown action '{parts[0]}'. Usage: {USAGE}")


SPEC = BuiltinCommandSpec(name="perm", handler=handle_perm, summary="Manage command permissions", usage="allow|deny|reset|list")
