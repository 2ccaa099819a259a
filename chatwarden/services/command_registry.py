# -*- coding: utf-8 -*-
"""Location: ./chatwarden/services/command_registry.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

Command registry and dispatcher.

Holds built-in command specs and the tenants' custom commands, resolves an
``Invocation`` to one of three variants and executes it through a single
interface::

    Command = BuiltinCommand(spec) | CustomCommand(definition) | NO_COMMAND

Custom commands are loaded from the durable store at start-up and written
through on every change (store first, then memory).
"""

# Future
from __future__ import annotations

# Standard
import asyncio
from dataclasses import dataclass, field
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple, TYPE_CHECKING, Union

# First-Party
from chatwarden.errors import CommandUsageError, ConfigurationError, NoReply, ScriptError, ScriptResourceExceeded, ScriptRuntimeError, ScriptTimeout, UnknownCommand
from chatwarden.models import Actor, CommandKind, CustomCommandDefinition, Invocation, ScriptErrorKind, ScriptLimits, ScriptResult
from chatwarden.services.storage_service import DurableStore

if TYPE_CHECKING:
    # First-Party
    from chatwarden.config import Settings
    from chatwarden.services.emoji_usage_collector import EmojiUsageCollector
    from chatwarden.services.execution_policy import ExecutionPolicy
    from chatwarden.services.sandbox_manager import SandboxManager

logger = logging.getLogger(__name__)

COMMAND_NAME_RE = re.compile(r"^[A-Za-z0-9_-]{1,32}$")

BuiltinHandler = Callable[["CommandContext"], Awaitable[Optional[str]]]


@dataclass
class CommandServices:
    """Collaborators handed to commands, wired once at composition time."""

    policy: "ExecutionPolicy"
    registry: "CommandRegistry"
    sandbox: Optional["SandboxManager"] = None
    emoji_collector: Optional["EmojiUsageCollector"] = None
    script_limits: ScriptLimits = field(default_factory=ScriptLimits)
    settings: Optional["Settings"] = None


@dataclass(frozen=True)
class CommandContext:
    """Everything a command needs to execute one invocation."""

    invocation: Invocation
    tenant_id: str
    channel_id: str
    actor: Actor
    services: CommandServices


@dataclass(frozen=True)
class BuiltinCommandSpec:
    """Declaration of a built-in command.

    Attributes:
        name: Command name.
        handler: Coroutine executing the command.
        summary: One-line description for ``help``.
        usage: Argument synopsis.
        default_allow: Decision when a tenant has no rule set for the command.
    """

    name: str
    handler: BuiltinHandler
    summary: str = ""
    usage: str = ""
    default_allow: bool = False


@dataclass(frozen=True)
class BuiltinCommand:
    """Resolved built-in command."""

    spec: BuiltinCommandSpec
    invocation: Invocation

    async def execute(self, context: CommandContext) -> Optional[str]:
        """Run the built-in handler.

        Args:
            context: Execution context.

        Returns:
            Optional[str]: Reply text, or None for no reply.
        """
        return await self.spec.handler(context)


@dataclass(frozen=True)
class CustomCommand:
    """Resolved tenant-defined command."""

    definition: CustomCommandDefinition
    invocation: Invocation

    async def execute(self, context: CommandContext) -> Optional[str]:
        """Reply with the text body or run the script body in the sandbox.

        Args:
            context: Execution context.

        Returns:
            Optional[str]: Reply text, or None for no reply.

        Raises:
            NoReply: If the script asked for silence.
            ScriptError: If the script failed.
            CommandUsageError: If no sandbox is configured.
        """
        if self.definition.kind is CommandKind.TEXT:
            return render_text_body(self.definition.body, context)

        sandbox = context.services.sandbox
        if sandbox is None:
            raise CommandUsageError("Script commands are not available")
        result = await sandbox.run_script(
            self.definition.body,
            bindings=script_bindings(context),
            limits=context.services.script_limits,
            tenant_id=context.tenant_id,
        )
        return unwrap_script_result(result)


class _NoCommand:
    """Sentinel variant: the invocation matches nothing."""

    _instance: Optional["_NoCommand"] = None

    def __new__(cls) -> "_NoCommand":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_COMMAND"

    def __bool__(self) -> bool:
        return False

    async def execute(self, context: CommandContext) -> Optional[str]:  # noqa: ARG002 # pylint: disable=unused-argument
        """Produce no reply."""
        return None


NO_COMMAND = _NoCommand()

Command = Union[BuiltinCommand, CustomCommand, _NoCommand]


def render_text_body(body: str, context: CommandContext) -> str:
    """Substitute ``{args}`` and ``{author}`` in a text body.

    Args:
        body: Stored reply text.
        context: Execution context.

    Returns:
        str: Reply text.
    """
    return body.replace("{args}", context.invocation.raw_args).replace("{author}", f"<@{context.actor.user_id}>")


def script_bindings(context: CommandContext) -> Dict[str, Any]:
    """Values injected into a script's global scope.

    Args:
        context: Execution context.

    Returns:
        Dict[str, Any]: JSON-compatible bindings.
    """
    return {
        "args": context.invocation.raw_args,
        "argv": context.invocation.argv,
        "author": context.actor.user_id,
        "tenant": context.tenant_id,
        "channel": context.channel_id,
    }


_SCRIPT_ERRORS = {
    ScriptErrorKind.TIMEOUT: ScriptTimeout,
    ScriptErrorKind.RESOURCE_EXCEEDED: ScriptResourceExceeded,
    ScriptErrorKind.RUNTIME_ERROR: ScriptRuntimeError,
}


def unwrap_script_result(result: ScriptResult) -> Optional[str]:
    """Turn a script result into reply text or the matching exception.

    Args:
        result: Sandbox result.

    Returns:
        Optional[str]: Output text.

    Raises:
        NoReply: For a silent result.
        ScriptError: For any other failure.

    Examples:
        >>> unwrap_script_result(ScriptResult.success("4"))
        '4'
        >>> unwrap_script_result(ScriptResult.failure(ScriptErrorKind.TIMEOUT, "too slow"))
        Traceback (most recent call last):
        ...
        chatwarden.errors.ScriptTimeout: too slow
    """
    if result.error is None:
        return result.output
    if result.error.message is None:
        raise NoReply()
    error_cls = _SCRIPT_ERRORS.get(result.error.kind, ScriptError)
    raise error_cls(result.error.message)


class CommandRegistry:
    """Resolves invocations to built-in or custom commands."""

    def __init__(self, store: DurableStore, builtins: Iterable[BuiltinCommandSpec] = (), allow_builtin_shadowing: bool = False) -> None:
        """Create a registry.

        Args:
            store: Durable store for custom commands.
            builtins: Built-in command specs to register.
            allow_builtin_shadowing: Whether custom commands may take built-in names.
        """
        self._store = store
        self.allow_builtin_shadowing = allow_builtin_shadowing
        self._builtins: Dict[str, BuiltinCommandSpec] = {}
        self._custom: Dict[str, Dict[str, CustomCommandDefinition]] = {}
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        for spec in builtins:
            self.register_builtin(spec)

    def register_builtin(self, spec: BuiltinCommandSpec) -> None:
        """Add a built-in command.

        Args:
            spec: Built-in declaration.

        Raises:
            ValueError: If the name is invalid or already registered.
        """
        if not COMMAND_NAME_RE.match(spec.name):
            raise ValueError(f"Invalid built-in command name: {spec.name!r}")
        if spec.name in self._builtins:
            raise ValueError(f"Built-in command already registered: {spec.name}")
        self._builtins[spec.name] = spec

    @property
    def builtin_names(self) -> List[str]:
        """Sorted names of the built-in commands."""
        return sorted(self._builtins)

    def builtin(self, name: str) -> Optional[BuiltinCommandSpec]:
        """Return the built-in spec with the given name, if any."""
        return self._builtins.get(name)

    @property
    def defaults(self) -> Dict[str, bool]:
        """Default authorization decision per built-in."""
        return {name: spec.default_allow for name, spec in self._builtins.items()}

    def has_custom_command(self, tenant_id: str, name: str) -> bool:
        """Return whether the tenant defines a custom command with this name.

        Args:
            tenant_id: Tenant id.
            name: Command name.

        Returns:
            bool: True if defined.
        """
        return name in self._custom.get(tenant_id, {})

    def custom_commands(self, tenant_id: str) -> Dict[str, CustomCommandDefinition]:
        """Snapshot of a tenant's custom commands."""
        return dict(self._custom.get(tenant_id, {}))

    def known_names(self) -> Set[str]:
        """Every built-in and custom command name of every tenant."""
        names = set(self._builtins)
        for commands in self._custom.values():
            names.update(commands)
        return names

    def process(self, invocation: Invocation, tenant_id: str) -> Command:
        """Resolve an invocation; custom commands take precedence.

        Args:
            invocation: Parsed invocation.
            tenant_id: Tenant the message came from.

        Returns:
            Command: The resolved variant or ``NO_COMMAND``.
        """
        definition = self._custom.get(tenant_id, {}).get(invocation.command_name)
        if definition is not None:
            return CustomCommand(definition, invocation)
        spec = self._builtins.get(invocation.command_name)
        if spec is not None:
            return BuiltinCommand(spec, invocation)
        return NO_COMMAND

    def resolve(self, invocation: Invocation, tenant_id: str) -> Union[BuiltinCommand, CustomCommand]:
        """Resolve an invocation that must name an existing command.

        Args:
            invocation: Parsed invocation.
            tenant_id: Tenant the message came from.

        Returns:
            Union[BuiltinCommand, CustomCommand]: The resolved command.

        Raises:
            UnknownCommand: If nothing matches the invocation.
        """
        command = self.process(invocation, tenant_id)
        if command is NO_COMMAND:
            raise UnknownCommand(f"Unknown command: {invocation.command_name}")
        return command

    async def load_custom_commands(self) -> None:
        """Load every tenant's custom commands from the store.

        Raises:
            StorageUnavailable: If the store cannot be read.
        """
        custom: Dict[str, Dict[str, CustomCommandDefinition]] = {}
        for definition in await self._store.load_all_custom_commands():
            custom.setdefault(definition.tenant_id, {})[definition.name] = definition
        self._custom = custom
        logger.info("Loaded %d custom commands for %d tenants", sum(len(v) for v in custom.values()), len(custom))

    async def define_custom_command(self, definition: CustomCommandDefinition) -> CustomCommandDefinition:
        """Create or replace a custom command.

        Args:
            definition: Command to store.

        Returns:
            CustomCommandDefinition: The stored definition.

        Raises:
            CommandUsageError: If the name is invalid, the body empty, or it
                shadows a built-in without permission.
            StorageUnavailable: If persisting failed; memory is unchanged.
        """
        self._validate_definition(definition)
        async with self._lock_for(definition.tenant_id, definition.name):
            await self._store.upsert_custom_command(definition)
            self._custom.setdefault(definition.tenant_id, {})[definition.name] = definition
        logger.info("Defined %s command %s in %s", definition.kind.value, definition.name, definition.tenant_id)
        return definition

    async def delete_custom_command(self, tenant_id: str, name: str) -> bool:
        """Delete a custom command.

        Args:
            tenant_id: Tenant id.
            name: Command name.

        Returns:
            bool: False if the tenant had no such command.

        Raises:
            StorageUnavailable: If the store failed; memory is unchanged.
        """
        async with self._lock_for(tenant_id, name):
            if not self.has_custom_command(tenant_id, name):
                return False
            await self._store.delete_custom_command(tenant_id, name)
            tenant_commands = self._custom.get(tenant_id, {})
            tenant_commands.pop(name, None)
            if not tenant_commands:
                self._custom.pop(tenant_id, None)
        logger.info("Deleted command %s in %s", name, tenant_id)
        return True

    async def remove_tenant(self, tenant_id: str) -> None:
        """Delete every custom command of a tenant that left.

        Args:
            tenant_id: Tenant id.

        Raises:
            StorageUnavailable: If the store failed.
        """
        removed = await self._store.delete_custom_commands(tenant_id)
        self._custom.pop(tenant_id, None)
        for key in [k for k in self._locks if k[0] == tenant_id]:
            del self._locks[key]
        logger.info("Removed %d custom commands of tenant %s", removed, tenant_id)

    def validate_initial_grants(self, names: Iterable[str]) -> None:
        """Check that every initially granted command is a registered built-in.

        Args:
            names: Configured initial grants.

        Raises:
            ConfigurationError: Listing every unknown name.
        """
        unknown = [name for name in names if name not in self._builtins]
        if unknown:
            raise ConfigurationError(f"init_allow_commands lists unknown commands: {', '.join(unknown)}")

    def _validate_definition(self, definition: CustomCommandDefinition) -> None:
        if not COMMAND_NAME_RE.match(definition.name):
            raise CommandUsageError("Command names may only contain letters, digits, '-' and '_' (max 32 characters)")
        if not definition.body.strip():
            raise CommandUsageError("Command body cannot be empty")
        if definition.name in self._builtins and not self.allow_builtin_shadowing:
            raise CommandUsageError(f"'{definition.name}' is a built-in command")

    def _lock_for(self, tenant_id: str, name: str) -> asyncio.Lock:
        key = (tenant_id, name)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock
