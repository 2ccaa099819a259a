# -*- coding: utf-8 -*-
"""Tests for the application composition root."""

# Standard
import signal
from unittest.mock import AsyncMock, MagicMock

# Third-Party
import pytest

# First-Party
from chatwarden.config import Settings
from chatwarden.errors import SandboxIsolationError, StorageUnavailable
from chatwarden.main import ChatWardenApp
from chatwarden.models import InboundMessage
from chatwarden.services.logging_service import get_logging_service
from chatwarden.services.storage_service import SqlAlchemyStore


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    get_logging_service().shutdown()


def _settings(**overrides):
    values = dict(_env_file=None, database_url="sqlite+aiosqlite://", bot_token="token", log_level="WARNING")
    values.update(overrides)
    return Settings(**values)


def _failing_store():
    store = AsyncMock()
    store.connect.side_effect = StorageUnavailable("unreachable", operation="connect")
    return store


@pytest.mark.asyncio
async def test_unreachable_store_exits_before_handler_exists():
    sandbox = AsyncMock()
    factory = MagicMock()
    app = ChatWardenApp(settings=_settings(), store=_failing_store(), sandbox=sandbox, transport_factory=factory)

    with pytest.raises(SystemExit) as exc_info:
        await app.run()

    assert exc_info.value.code == 1
    assert app.handler is None
    sandbox.start.assert_not_awaited()
    factory.assert_not_called()


@pytest.mark.asyncio
async def test_sandbox_isolation_failure_exits():
    store = AsyncMock()
    sandbox = AsyncMock()
    sandbox.start.side_effect = SandboxIsolationError("no isolation")
    app = ChatWardenApp(settings=_settings(), store=store, sandbox=sandbox)

    with pytest.raises(SystemExit):
        await app.startup()

    assert app.handler is None
    store.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_unknown_initial_grant_exits():
    sandbox = AsyncMock()
    store = SqlAlchemyStore("sqlite+aiosqlite://")
    app = ChatWardenApp(settings=_settings(init_allow_commands=["help", "rol"]), store=store, sandbox=sandbox)

    with pytest.raises(SystemExit):
        await app.startup()

    assert app.handler is None
    sandbox.stop.assert_awaited_once()
    assert not store.connected


@pytest.mark.asyncio
async def test_missing_token_exits_without_starting():
    store = AsyncMock()
    app = ChatWardenApp(settings=_settings(bot_token=None), store=store, sandbox=AsyncMock())
    with pytest.raises(SystemExit):
        await app.run()
    store.connect.assert_not_awaited()


@pytest.mark.asyncio
async def test_startup_wires_a_working_handler():
    sandbox = AsyncMock()
    app = ChatWardenApp(settings=_settings(), store=SqlAlchemyStore("sqlite+aiosqlite://"), sandbox=sandbox)

    handler = await app.startup()
    try:
        assert app.policy.loaded
        assert app.emoji_collector.running
        reply = await handler.handle(InboundMessage(author_id="1", tenant_id="100", channel_id="200", text="!help"))
        assert reply.startswith("**Commands**")
    finally:
        await app.shutdown()

    sandbox.start.assert_awaited_once()
    sandbox.stop.assert_awaited_once()
    assert not app.emoji_collector.running
    assert not app.store.connected


@pytest.mark.asyncio
async def test_prefixless_mode_matches_command_names():
    app = ChatWardenApp(settings=_settings(prefixless_commands=True), store=SqlAlchemyStore("sqlite+aiosqlite://"), sandbox=AsyncMock())
    handler = await app.startup()
    try:
        reply = await handler.handle(InboundMessage(author_id="1", tenant_id="100", channel_id="200", text="help"))
        assert reply.startswith("**Commands**")
        assert await handler.handle(InboundMessage(author_id="1", tenant_id="100", channel_id="200", text="helpful tip")) is None
    finally:
        await app.shutdown()


@pytest.mark.asyncio
async def test_run_connects_transport_and_shuts_down():
    transport = AsyncMock()
    factory = MagicMock(return_value=transport)
    sandbox = AsyncMock()
    app = ChatWardenApp(settings=_settings(), store=SqlAlchemyStore("sqlite+aiosqlite://"), sandbox=sandbox, transport_factory=factory)

    await app.run()

    factory.assert_called_once_with(app.handler, app.settings)
    transport.start.assert_awaited_once_with("token")
    transport.close.assert_awaited_once()
    sandbox.stop.assert_awaited_once()
    assert app.transport is None


@pytest.mark.asyncio
async def test_signal_close_is_awaited_on_shutdown():
    transport = AsyncMock()
    app = ChatWardenApp(settings=_settings(), store=AsyncMock(), sandbox=AsyncMock())
    app.transport = transport

    app._request_stop(signal.SIGTERM)
    app._request_stop(signal.SIGINT)
    stop_task = app._stop_task
    assert stop_task is not None

    await app.shutdown()

    assert stop_task.done()
    transport.close.assert_awaited_once()
    assert app.transport is None
    assert app._stop_task is None
