# -*- coding: utf-8 -*-
"""Location: ./chatwarden/models.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

Core domain types shared by the parser, policy engine, registry and sandbox.

Uses frozen dataclasses so values produced per message can be passed between
tasks without defensive copies.
"""

# Future
from __future__ import annotations

# Standard
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, Optional


def _ids(values: Optional[Iterable[str]]) -> FrozenSet[str]:
    """Normalize an iterable of ids into a frozenset of non-empty strings."""
    if not values:
        return frozenset()
    return frozenset(str(v).strip() for v in values if str(v).strip())


@dataclass(frozen=True)
class Invocation:
    """A parsed command message."""

    command_name: str
    raw_args: str = ""

    @property
    def argv(self) -> list[str]:
        """Whitespace separated arguments."""
        return self.raw_args.split()


@dataclass(frozen=True)
class Actor:
    """The user attempting a command and the groups it belongs to."""

    user_id: str
    group_ids: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def of(cls, user_id: str, groups: Optional[Iterable[str]] = None) -> Actor:
        """Build an actor from raw ids."""
        return cls(user_id=str(user_id), group_ids=_ids(groups))


@dataclass(frozen=True)
class MemberSet:
    """Users and groups named by one side of a policy change."""

    users: FrozenSet[str] = field(default_factory=frozenset)
    groups: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def of(cls, users: Optional[Iterable[str]] = None, groups: Optional[Iterable[str]] = None) -> MemberSet:
        """Build a member set from raw ids, dropping blanks and duplicates."""
        return cls(users=_ids(users), groups=_ids(groups))

    @property
    def is_empty(self) -> bool:
        """True when no user and no group is named."""
        return not self.users and not self.groups


@dataclass(frozen=True)
class PolicyChange:
    """An add-set/remove-set transaction against one rule set."""

    add: MemberSet = field(default_factory=MemberSet)
    remove: MemberSet = field(default_factory=MemberSet)

    @classmethod
    def grant(cls, users: Optional[Iterable[str]] = None, groups: Optional[Iterable[str]] = None) -> PolicyChange:
        """Change that only adds members."""
        return cls(add=MemberSet.of(users, groups))

    @classmethod
    def revoke(cls, users: Optional[Iterable[str]] = None, groups: Optional[Iterable[str]] = None) -> PolicyChange:
        """Change that only removes members."""
        return cls(remove=MemberSet.of(users, groups))


@dataclass(frozen=True)
class RuleSet:
    """Explicit allow-list for one (tenant, command) pair."""

    users: FrozenSet[str] = field(default_factory=frozenset)
    groups: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_empty(self) -> bool:
        """True when nobody is granted."""
        return not self.users and not self.groups

    def grants(self, actor: Actor) -> bool:
        """Return True if the actor or one of its groups is listed."""
        if actor.user_id in self.users:
            return True
        return not self.groups.isdisjoint(actor.group_ids)

    def apply(self, change: PolicyChange) -> RuleSet:
        """Return the rule set after additions then removals (remove wins)."""
        users = (self.users | change.add.users) - change.remove.users
        groups = (self.groups | change.add.groups) - change.remove.groups
        return RuleSet(users=frozenset(users), groups=frozenset(groups))

    def to_dict(self) -> dict[str, list[str]]:
        """Serializable form with sorted members."""
        return {"users": sorted(self.users), "groups": sorted(self.groups)}


class CommandKind(str, Enum):
    """Body type of a custom command."""

    TEXT = "text"
    SCRIPT = "script"


@dataclass(frozen=True)
class CustomCommandDefinition:
    """A tenant-defined command, stored durably."""

    tenant_id: str
    name: str
    body: str
    kind: CommandKind = CommandKind.TEXT
    created_by: Optional[str] = None


class SandboxState(str, Enum):
    """Lifecycle state of the sandbox manager."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class ScriptLimits:
    """Resource ceiling for one script execution."""

    timeout_ms: int = 3000
    max_memory_mb: int = 128
    max_output_chars: int = 1900

    @property
    def timeout_seconds(self) -> float:
        """Wall-clock budget in seconds."""
        return self.timeout_ms / 1000


class ScriptErrorKind(str, Enum):
    """Why a script produced no output."""

    TIMEOUT = "timeout"
    RESOURCE_EXCEEDED = "resource_exceeded"
    RUNTIME_ERROR = "runtime_error"


@dataclass(frozen=True)
class ErrorInfo:
    """Failure payload of a script. ``message=None`` means intentional silence."""

    kind: ScriptErrorKind
    message: Optional[str] = None


@dataclass(frozen=True)
class ScriptResult:
    """Outcome of a sandboxed script: either output or error, never both."""

    output: Optional[str] = None
    error: Optional[ErrorInfo] = None

    def __post_init__(self) -> None:
        """Enforce that output and error are mutually exclusive."""
        if self.output is not None and self.error is not None:
            raise ValueError("ScriptResult cannot carry both output and error")

    @classmethod
    def success(cls, output: str) -> ScriptResult:
        """Successful result."""
        return cls(output=output)

    @classmethod
    def failure(cls, kind: ScriptErrorKind, message: Optional[str]) -> ScriptResult:
        """Failed result."""
        return cls(error=ErrorInfo(kind=kind, message=message))

    @property
    def ok(self) -> bool:
        """True if the script completed without error."""
        return self.error is None

    @property
    def is_silent(self) -> bool:
        """True if the script asked for no reply."""
        return self.error is not None and self.error.message is None


@dataclass(frozen=True)
class InboundMessage:
    """A chat message as delivered by the transport."""

    author_id: str
    tenant_id: str
    channel_id: str
    text: str
    is_bot: bool = False
    can_send_in_channel: bool = True
    author_group_ids: FrozenSet[str] = field(default_factory=frozenset)
    is_self: bool = False
    is_tenant_text_channel: bool = True


@dataclass
class EmojiUsage:
    """Usage counter for one custom emoji in one tenant."""

    emoji_id: str
    name: str
    animated: bool = False
    count: int = 0

    @property
    def markup(self) -> str:
        """Chat markup that renders the emoji."""
        return f"<{'a' if self.animated else ''}:{self.name}:{self.emoji_id}>"
