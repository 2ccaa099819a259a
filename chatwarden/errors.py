# -*- coding: utf-8 -*-
"""Location: ./chatwarden/errors.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

Shared exception types for chatwarden.

Authorization and resolution failures are absorbed by the message handler and
never reach the chat channel. Execution failures carry a message that is sent
back verbatim. ``NoReply`` is the only error that means "stay silent".
"""

# Future
from __future__ import annotations

# Standard
from typing import Optional


class ChatWardenError(Exception):
    """Base exception for chatwarden."""


class AuthorizationDenied(ChatWardenError):
    """The actor is not allowed to run the command.

    Attributes:
        reason: Machine friendly reason of the denial.
    """

    def __init__(self, message: str, reason: str = "not_granted") -> None:
        """Initialize with a message and the decision reason.

        Args:
            message: Human readable description.
            reason: Decision reason, e.g. ``no_rule_set``.
        """
        super().__init__(message)
        self.reason = reason


class TenantRemovedError(AuthorizationDenied):
    """The tenant is being removed; its permissions can no longer change."""

    def __init__(self, tenant_id: str) -> None:
        """Initialize for a tenant.

        Args:
            tenant_id: Tenant being removed.
        """
        super().__init__(f"Tenant {tenant_id} is being removed", reason="tenant_removed")
        self.tenant_id = tenant_id


class UnknownCommand(ChatWardenError):
    """No built-in or custom command matches the invocation."""


class CommandUsageError(ChatWardenError):
    """A command was called with invalid arguments."""


class NoReply(ChatWardenError):
    """Raised by a command that intentionally produces no reply."""

    def __init__(self) -> None:
        """Create a silent error without a message."""
        super().__init__("")


class ScriptError(ChatWardenError):
    """Base class for failures of a sandboxed script.

    Attributes:
        kind: Machine readable failure kind (matches ``ScriptErrorKind`` values).
    """

    kind = "runtime_error"


class ScriptTimeout(ScriptError):
    """Script exceeded its wall-clock budget."""

    kind = "timeout"


class ScriptResourceExceeded(ScriptError):
    """Script breached a memory, CPU or output ceiling."""

    kind = "resource_exceeded"


class ScriptRuntimeError(ScriptError):
    """Script raised an uncaught exception or failed validation."""

    kind = "runtime_error"


class SandboxUnavailable(ChatWardenError):
    """Sandbox manager is stopped or degraded and rejects new scripts."""


class SandboxIsolationError(ChatWardenError):
    """Isolation could not be established; fatal at start-up."""


class StorageUnavailable(ChatWardenError):
    """The durable store failed or could not be reached.

    Attributes:
        operation: Name of the store operation that failed.
    """

    def __init__(self, message: str, operation: Optional[str] = None) -> None:
        """Initialize with a message and the failing operation name.

        Args:
            message: Human readable description.
            operation: Store operation name, if known.
        """
        super().__init__(message)
        self.operation = operation


class ConfigurationError(ChatWardenError):
    """Invalid configuration; the process refuses to start."""


class PolicyNotLoadedError(ChatWardenError):
    """Policy store has not been loaded yet."""
