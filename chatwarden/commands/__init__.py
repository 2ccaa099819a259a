# -*- coding: utf-8 -*-
"""Location: ./chatwarden/commands/__init__.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

Built-in commands.

Examples:
    >>> [spec.name for spec in builtin_commands()]
    ['help', 'roll', 'py', 'cmd', 'perm', 'emoji', 'emoji-admin']
"""

# Standard
from typing import List

# First-Party
from chatwarden.commands import custom, emoji, help as help_command, permissions, python, roll
from chatwarden.services.command_registry import BuiltinCommandSpec

# Commands an owner can use on a freshly joined tenant
MANAGEMENT_COMMANDS = ("cmd", "perm", "emoji-admin")


def builtin_commands() -> List[BuiltinCommandSpec]:
    """Return the specs of every built-in command.

    Returns:
        List[BuiltinCommandSpec]: Built-ins in help order.
    """
    return [help_command.SPEC, roll.SPEC, python.SPEC, custom.SPEC, permissions.SPEC, emoji.SPEC, emoji.ADMIN_SPEC]
