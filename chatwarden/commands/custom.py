# -*- coding: utf-8 -*-
"""Location: ./chatwarden/commands/custom.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

``cmd`` built-in: manage the tenant's custom commands.

Usage:
    cmd add <name> <reply text>      text command ({args} and {author} are substituted)
    cmd script <name> <code>         script command run in the sandbox
    cmd remove <name>
    cmd list
    cmd show <name>
"""

# Standard
from typing import List, Optional

# First-Party
from chatwarden.commands.python import strip_code_fence
from chatwarden.errors import CommandUsageError
from chatwarden.models import CommandKind, CustomCommandDefinition
from chatwarden.services.command_registry import BuiltinCommandSpec, CommandContext
from chatwarden.services.sandbox_manager import ScriptValidator

USAGE = "cmd add|script <name> <body> | cmd remove <name> | cmd list | cmd show <name>"


async def _define(context: CommandContext, parts: List[str], kind: CommandKind) -> str:
    if len(parts) < 3:
        raise CommandUsageError(f"Usage: cmd {parts[0]} <name> <body>")
    name, body = parts[1], parts[2]
    if kind is CommandKind.SCRIPT:
        body = strip_code_fence(body)
        ScriptValidator().validate(body)
    registry = context.services.registry
    replaced = registry.has_custom_command(context.tenant_id, name)
    await registry.define_custom_command(CustomCommandDefinition(tenant_id=context.tenant_id, name=name, body=body, kind=kind, created_by=context.actor.user_id))
    return f"{'Updated' if replaced else 'Added'} command `{name}`"


async def _remove(context: CommandContext, parts: List[str]) -> str:
    if len(parts) < 2:
        raise CommandUsageError("Usage: cmd remove <name>")
    name = parts[1]
    if not await context.services.registry.delete_custom_command(context.tenant_id, name):
        raise CommandUsageError(f"No custom command named `{name}`")
    return f"Removed command `{name}`"


def _list(context: CommandContext) -> str:
    commands = context.services.registry.custom_commands(context.tenant_id)
    if not commands:
        return "This server has no custom commands"
    return "\n".join(f"`{name}` ({definition.kind.value})" for name, definition in sorted(commands.items()))


def _show(context: CommandContext, parts: List[str]) -> str:
    if len(parts) < 2:
        raise CommandUsageError("Usage: cmd show <name>")
    definition = context.services.registry.custom_commands(context.tenant_id).get(parts[1])
    if definition is None:
        raise CommandUsageError(f"No custom command named `{parts[1]}`")
    fence = "```py\n" if definition.kind is CommandKind.SCRIPT else "```\n"
    return f"`{definition.name}` ({definition.kind.value})\n{fence}{definition.body}\n```"


async def handle_cmd(context: CommandContext) -> Optional[str]:
    """Dispatch a ``cmd`` sub-command."""
    parts = context.invocation.raw_args.split(None, 2)
    if not parts:
        raise CommandUsageError(f"Usage: {USAGE}")
    action = parts[0].lower()
    if action == "add":
        return await _define(context, parts, CommandKind.TEXT)
    if action == "script":
        return await _define(context, parts, CommandKind.SCRIPT)
    if action in ("remove", "delete"):
        return await _remove(context, parts)
    if action == "list":
        return _list(context)
    if action == "show":
        return _show(context, parts)
    raise CommandUsageError(f"Unknown action '{parts[0]}'. Usage: {USAGE}")


SPEC = BuiltinCommandSpec(name="cmd", handler=handle_cmd, summary="Manage custom commands", usage="add|script|remove|list|show")
