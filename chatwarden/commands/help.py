# -*- coding: utf-8 -*-
"""Location: ./chatwarden/commands/help.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

``help`` built-in: lists the commands the caller can run.
"""

# Standard
from typing import List, Optional

# First-Party
from chatwarden.services.command_registry import BuiltinCommandSpec, CommandContext


async def handle_help(context: CommandContext) -> Optional[str]:
    """List built-ins the actor may run, then the tenant's custom commands."""
    services = context.services
    prefix = services.settings.command_prefix if services.settings is not None else "!"
    registry = services.registry

    lines: List[str] = ["**Commands**"]
    for name in registry.builtin_names:
        spec = registry.builtin(name)
        if spec is None or not services.policy.check(context.tenant_id, name, context.actor):
            continue
        usage = f" {spec.usage}" if spec.usage else ""
        lines.append(f"`{prefix}{name}{usage}` - {spec.summary}")

    custom = sorted(registry.custom_commands(context.tenant_id))
    if custom:
        lines.append("**Custom commands**")
        lines.append(", ".join(f"`{prefix}{name}`" for name in custom))
    return "\n".join(lines)


SPEC = BuiltinCommandSpec(name="help", handler=handle_help, summary="Show available commands", default_allow=True)
