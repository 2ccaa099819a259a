# -*- coding: utf-8 -*-
"""Location: ./chatwarden/main.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

chatwarden composition root.

``ChatWardenApp`` wires every component explicitly and owns the process
lifecycle. Start-up order:

1. logging
2. durable store (fatal if unreachable, before any handler exists)
3. sandbox (fatal if isolation cannot be established)
4. built-in commands and validation of ``init_allow_commands`` (fatal)
5. custom commands, then permissions
6. emoji statistics snapshot and autosave task
7. message handler, then the chat transport

``shutdown`` releases everything in reverse order.
"""

# Future
from __future__ import annotations

# Standard
import asyncio
import logging
import signal
from typing import Callable, Optional, Protocol

# First-Party
from chatwarden.commands import builtin_commands, MANAGEMENT_COMMANDS
from chatwarden.config import get_settings, Settings
from chatwarden.errors import ConfigurationError, SandboxIsolationError, StorageUnavailable
from chatwarden.message_parser import MessageParser
from chatwarden.services.command_registry import CommandRegistry, CommandServices
from chatwarden.services.emoji_usage_collector import EmojiUsageCollector
from chatwarden.services.execution_policy import ExecutionPolicy
from chatwarden.services.logging_service import get_logging_service
from chatwarden.services.message_handler import MessageHandler
from chatwarden.services.sandbox_manager import SandboxManager
from chatwarden.services.storage_service import SqlAlchemyStore

logger = logging.getLogger(__name__)


class ChatTransport(Protocol):
    """What the application needs from a chat transport."""

    async def start(self, token: str) -> None:
        """Connect and deliver events until closed."""

    async def close(self) -> None:
        """Disconnect."""


TransportFactory = Callable[[MessageHandler, Settings], ChatTransport]


def _discord_transport(handler: MessageHandler, settings: Settings) -> ChatTransport:
    # First-Party
    from chatwarden.transports.discord_transport import DiscordTransport  # pylint: disable=import-outside-toplevel

    return DiscordTransport(handler, status_interval=settings.update_status_interval_seconds)


class ChatWardenApp:
    """Owns and wires every chatwarden component."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[SqlAlchemyStore] = None,
        sandbox: Optional[SandboxManager] = None,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        """Create an application that has not started yet.

        Args:
            settings: Configuration; the process settings when omitted.
            store: Durable store; built from ``database_url`` when omitted.
            sandbox: Sandbox manager; built from the sandbox settings when omitted.
            transport_factory: Builds the chat transport from the handler.
        """
        self.settings = settings or get_settings()
        self.store = store or SqlAlchemyStore(self.settings.database_url, echo=self.settings.database_echo)
        self.sandbox = sandbox or SandboxManager(
            default_limits=self.settings.script_limits(),
            pool_size=self.settings.sandbox_pool_size,
            per_tenant_concurrency=self.settings.sandbox_per_tenant_concurrency,
            python_path=self.settings.sandbox_python_path,
        )
        self.transport_factory = transport_factory or _discord_transport
        self.registry: Optional[CommandRegistry] = None
        self.policy: Optional[ExecutionPolicy] = None
        self.emoji_collector: Optional[EmojiUsageCollector] = None
        self.handler: Optional[MessageHandler] = None
        self.transport: Optional[ChatTransport] = None
        self._stop_task: Optional[asyncio.Task] = None

    async def startup(self) -> MessageHandler:
        """Bring every component up in dependency order.

        Returns:
            MessageHandler: The wired handler.

        Raises:
            SystemExit: With status 1 when storage, the sandbox or the
                configuration make it impossible to run.
        """
        get_logging_service().configure(self.settings)
        logger.info("Starting chatwarden")

        try:
            await self.store.connect()
        except StorageUnavailable as exc:
            logger.critical("Durable store unreachable, exiting: %s", exc)
            raise SystemExit(1) from exc

        try:
            await self.sandbox.start()
        except SandboxIsolationError as exc:
            logger.critical("Sandbox could not start, exiting: %s", exc)
            await self.store.close()
            raise SystemExit(1) from exc

        try:
            self.registry = CommandRegistry(self.store, builtin_commands(), allow_builtin_shadowing=self.settings.allow_builtin_shadowing)
            self.registry.validate_initial_grants(self.settings.init_allow_commands)
            await self.registry.load_custom_commands()

            self.policy = ExecutionPolicy(self.store, defaults=self.registry.defaults)
            await self.policy.load_permissions()

            self.emoji_collector = EmojiUsageCollector(self.store, autosave_interval=self.settings.emoji_autosave_interval_seconds)
            await self.emoji_collector.load()
        except (ConfigurationError, StorageUnavailable) as exc:
            logger.critical("Start-up failed, exiting: %s", exc)
            await self.sandbox.stop()
            await self.store.close()
            raise SystemExit(1) from exc
        self.emoji_collector.start()

        services = CommandServices(
            policy=self.policy,
            registry=self.registry,
            sandbox=self.sandbox,
            emoji_collector=self.emoji_collector,
            script_limits=self.settings.script_limits(),
            settings=self.settings,
        )
        self.handler = MessageHandler(
            parser=self._build_parser(),
            policy=self.policy,
            registry=self.registry,
            services=services,
            emoji_collector=self.emoji_collector,
            init_allow_commands=self.settings.init_allow_commands,
            owner_commands=MANAGEMENT_COMMANDS,
        )
        logger.info("chatwarden ready (%d built-ins)", len(self.registry.builtin_names))
        return self.handler

    async def run(self) -> None:
        """Start up, connect the transport and run until it closes or a signal arrives.

        Raises:
            SystemExit: If the bot token is missing or start-up fails.
        """
        if not self.settings.bot_token:
            logger.critical("BOT_TOKEN is not configured")
            raise SystemExit(1)

        handler = await self.startup()
        self.transport = self.transport_factory(handler, self.settings)
        self._install_signal_handlers()
        try:
            await self.transport.start(self.settings.bot_token)
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Release every component in reverse start-up order."""
        logger.info("Shutting down chatwarden")
        if self._stop_task is not None:
            try:
                await self._stop_task
            except Exception:  # pylint: disable=broad-except
                logger.exception("Closing the transport on signal failed")
            self._stop_task = None
            self.transport = None
        if self.transport is not None:
            await self.transport.close()
            self.transport = None
        if self.emoji_collector is not None:
            await self.emoji_collector.stop()
        await self.sandbox.stop()
        await self.store.close()
        get_logging_service().shutdown()

    def _build_parser(self) -> MessageParser:
        if self.settings.prefixless_commands:
            return MessageParser("", command_names=self.registry.known_names)
        return MessageParser(self.settings.command_prefix)

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._request_stop, sig)
            except (NotImplementedError, RuntimeError):
                logger.debug("Signal handlers not supported for %s", sig)

    def _request_stop(self, sig: signal.Signals) -> None:
        logger.info("Received %s, stopping", sig.name)
        if self.transport is not None and self._stop_task is None:
            self._stop_task = asyncio.get_running_loop().create_task(self.transport.close())


def main() -> None:
    """Run chatwarden with the process settings."""
    asyncio.run(ChatWardenApp().run())


if __name__ == "__main__":
    main()
