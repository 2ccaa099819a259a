# -*- coding: utf-8 -*-
"""Location: ./tests/conftest.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

Shared fixtures: settings, an in-memory store and wired services.
"""

# Standard
from unittest.mock import AsyncMock

# Third-Party
import pytest
import pytest_asyncio

# First-Party
from chatwarden.commands import builtin_commands
from chatwarden.config import Settings
from chatwarden.message_parser import MessageParser
from chatwarden.models import Actor, InboundMessage, ScriptLimits
from chatwarden.services.command_registry import CommandRegistry, CommandServices
from chatwarden.services.emoji_usage_collector import EmojiUsageCollector
from chatwarden.services.execution_policy import ExecutionPolicy
from chatwarden.services.message_handler import MessageHandler
from chatwarden.services.storage_service import SqlAlchemyStore

TENANT = "100"
CHANNEL = "200"


@pytest.fixture
def test_settings():
    """Settings isolated from the environment and any .env file."""
    return Settings(_env_file=None, database_url="sqlite+aiosqlite://", bot_token="test-token")


@pytest_asyncio.fixture
async def store():
    """Connected in-memory store."""
    db_store = SqlAlchemyStore("sqlite+aiosqlite://")
    await db_store.connect()
    yield db_store
    await db_store.close()


@pytest_asyncio.fixture
async def registry(store):
    """Registry with every built-in and no custom commands."""
    command_registry = CommandRegistry(store, builtin_commands())
    await command_registry.load_custom_commands()
    return command_registry


@pytest_asyncio.fixture
async def policy(store, registry):
    """Loaded policy using the built-in defaults."""
    execution_policy = ExecutionPolicy(store, defaults=registry.defaults)
    await execution_policy.load_permissions()
    return execution_policy


@pytest.fixture
def emoji_collector(store):
    return EmojiUsageCollector(store, autosave_interval=3600)


@pytest.fixture
def sandbox():
    """Stand-in sandbox; tests set ``run_script.return_value``."""
    return AsyncMock()


@pytest.fixture
def services(policy, registry, sandbox, emoji_collector, test_settings):
    return CommandServices(
        policy=policy,
        registry=registry,
        sandbox=sandbox,
        emoji_collector=emoji_collector,
        script_limits=ScriptLimits(timeout_ms=1000),
        settings=test_settings,
    )


@pytest.fixture
def handler(policy, registry, services, emoji_collector):
    return MessageHandler(
        parser=MessageParser("!"),
        policy=policy,
        registry=registry,
        services=services,
        emoji_collector=emoji_collector,
        init_allow_commands=["help", "roll", "py", "emoji"],
        owner_commands=["cmd", "perm", "emoji-admin"],
    )


@pytest.fixture
def make_message():
    """Factory for inbound messages in the default tenant."""

    def _make(text, author_id="1", groups=(), **overrides):
        fields = dict(author_id=author_id, tenant_id=TENANT, channel_id=CHANNEL, text=text, author_group_ids=frozenset(groups))
        fields.update(overrides)
        return InboundMessage(**fields)

    return _make


@pytest.fixture
def actor():
    return Actor.of("1")
