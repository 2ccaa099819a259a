# -*- coding: utf-8 -*-
"""Location: ./chatwarden/commands/emoji.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

``emoji`` and ``emoji-admin`` built-ins: custom emoji usage statistics.

Usage:
    emoji [top [N]]
    emoji enable | emoji disable | emoji reset
    emoji-admin enable | emoji-admin disable | emoji-admin reset

Reading the statistics needs the ``emoji`` grant. Changing them needs the
``emoji-admin`` grant, whichever of the two commands is used.
"""

# Standard
from typing import Optional

# First-Party
from chatwarden.errors import CommandUsageError
from chatwarden.services.command_registry import BuiltinCommandSpec, CommandContext

ADMIN_COMMAND = "emoji-admin"
ADMIN_ACTIONS = ("enable", "disable", "reset")


def _collector(context: CommandContext):
    collector = context.services.emoji_collector
    if collector is None:
        raise CommandUsageError("Emoji statistics are not available")
    return collector


async def _apply_admin_action(context: CommandContext, action: str) -> str:
    collector = _collector(context)
    if action in ("enable", "disable"):
        await collector.set_enabled(context.tenant_id, action == "enable")
        return f"Emoji statistics {action}d"
    collector.reset(context.tenant_id)
    return "Emoji statistics reset"


async def handle_emoji(context: CommandContext) -> Optional[str]:
    """Show the tenant's emoji statistics, or forward a management action."""
    collector = _collector(context)
    parts = context.invocation.argv
    action = parts[0].lower() if parts else "top"

    if action == "top":
        default_limit = context.services.settings.emoji_top_limit if context.services.settings is not None else 10
        try:
            limit = int(parts[1]) if len(parts) > 1 else default_limit
        except ValueError:
            raise CommandUsageError("Usage: emoji top [N]") from None
        if limit < 1:
            raise CommandUsageError("N must be at least 1")
        usages = collector.top(context.tenant_id, min(limit, 50))
        if not usages:
            return "No emoji usage recorded yet"
        return "\n".join(f"{i}. {usage.markup} x{usage.count}" for i, usage in enumerate(usages, start=1))
    if action in ADMIN_ACTIONS:
        context.services.policy.authorize(context.tenant_id, ADMIN_COMMAND, context.actor)
        return await _apply_admin_action(context, action)
    raise CommandUsageError("Usage: emoji [top [N]] | emoji enable | emoji disable | emoji reset")


async def handle_emoji_admin(context: CommandContext) -> Optional[str]:
    """Enable, disable or reset the tenant's emoji statistics."""
    parts = context.invocation.argv
    action = parts[0].lower() if parts else ""
    if action not in ADMIN_ACTIONS:
        raise CommandUsageError("Usage: emoji-admin enable | emoji-admin disable | emoji-admin reset")
    return await _apply_admin_action(context, action)


SPEC = BuiltinCommandSpec(name="emoji", handler=handle_emoji, summary="Custom emoji usage statistics", usage="[top [N]]")
ADMIN_SPEC = BuiltinCommandSpec(name=ADMIN_COMMAND, handler=handle_emoji_admin, summary="Enable, disable or reset emoji statistics", usage="enable|disable|reset")
