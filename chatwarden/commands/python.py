# -*- coding: utf-8 -*-
"""Location: ./chatwarden/commands/python.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

``py`` built-in: run the argument text as a sandboxed script.

Examples:
    >>> strip_code_fence("```py\\nprint(1)\\n```")
    'print(1)'
    >>> strip_code_fence("`1 + 1`")
    '1 + 1'
    >>> strip_code_fence("1 + 1")
    '1 + 1'
"""

# Standard
import re
from typing import Optional

# First-Party
from chatwarden.errors import CommandUsageError
from chatwarden.services.command_registry import BuiltinCommandSpec, CommandContext, script_bindings, unwrap_script_result

_FENCE_RE = re.compile(r"^```(?:python|py)?\s*\n?(.*?)\n?```$", re.DOTALL | re.IGNORECASE)
_INLINE_RE = re.compile(r"^`([^`]*)`$")


def strip_code_fence(text: str) -> str:
    """Remove a surrounding Markdown code block or inline code marker.

    Args:
        text: Raw argument text.

    Returns:
        str: The bare source.
    """
    text = text.strip()
    for pattern in (_FENCE_RE, _INLINE_RE):
        match = pattern.match(text)
        if match:
            return match.group(1).strip()
    return text


async def handle_py(context: CommandContext) -> Optional[str]:
    """Run the given code in the sandbox and reply with its output."""
    source = strip_code_fence(context.invocation.raw_args)
    if not source:
        raise CommandUsageError("Usage: py <code>")
    sandbox = context.services.sandbox
    if sandbox is None:
        raise CommandUsageError("Script execution is not available")
    result = await sandbox.run_script(source, bindings=script_bindings(context), limits=context.services.script_limits, tenant_id=context.tenant_id)
    return unwrap_script_result(result)


SPEC = BuiltinCommandSpec(name="py", handler=handle_py, summary="Run a Python snippet in the sandbox", usage="<code>")
