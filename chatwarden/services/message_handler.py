# -*- coding: utf-8 -*-
"""Location: ./chatwarden/services/message_handler.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

Inbound message control flow.

One call to ``handle`` per message::

    filter -> observe emoji -> parse -> authorize -> resolve -> execute -> reply

Authorization passes when the tenant defines a custom command with the
invoked name (custom commands are tenant-wide) or when the policy grants the
actor. Denials and unknown commands are silent; failures after authorization
reply with the error text.
"""

# Future
from __future__ import annotations

# Standard
import logging
from typing import Iterable, Optional

# First-Party
from chatwarden.errors import AuthorizationDenied, ChatWardenError, NoReply, StorageUnavailable, TenantRemovedError, UnknownCommand
from chatwarden.message_parser import MessageParser
from chatwarden.models import Actor, InboundMessage, PolicyChange
from chatwarden.services.command_registry import CommandContext, CommandRegistry, CommandServices
from chatwarden.services.emoji_usage_collector import EmojiUsageCollector
from chatwarden.services.execution_policy import ExecutionPolicy

logger = logging.getLogger(__name__)


class MessageHandler:
    """Turns inbound chat messages into optional reply text."""

    def __init__(
        self,
        parser: MessageParser,
        policy: ExecutionPolicy,
        registry: CommandRegistry,
        services: CommandServices,
        emoji_collector: Optional[EmojiUsageCollector] = None,
        init_allow_commands: Iterable[str] = (),
        owner_commands: Iterable[str] = (),
    ) -> None:
        """Wire the handler.

        Args:
            parser: Message parser.
            policy: Authorization engine.
            registry: Command registry.
            services: Collaborators passed to commands.
            emoji_collector: Optional emoji statistics collector.
            init_allow_commands: Built-ins opened to everyone when a tenant joins.
            owner_commands: Built-ins granted to the tenant owner when it joins.
        """
        self.parser = parser
        self.policy = policy
        self.registry = registry
        self.services = services
        self.emoji_collector = emoji_collector
        self.init_allow_commands = list(init_allow_commands)
        self.owner_commands = list(owner_commands)

    async def handle(self, event: InboundMessage) -> Optional[str]:
        """Process one inbound message.

        Args:
            event: Message delivered by the transport.

        Returns:
            Optional[str]: Reply text, or None when nothing should be sent.
        """
        if event.is_self or event.is_bot or not event.is_tenant_text_channel:
            return None

        if self.emoji_collector is not None:
            self.emoji_collector.observe(event.tenant_id, event.text)

        invocation = self.parser.parse(event.text)
        if invocation is None:
            return None

        # Every member belongs to the tenant-wide group, whose id is the tenant id
        actor = Actor.of(event.author_id, [*event.author_group_ids, event.tenant_id])
        name = invocation.command_name
        try:
            if not self.registry.has_custom_command(event.tenant_id, name):
                self.policy.authorize(event.tenant_id, name, actor)
            command = self.registry.resolve(invocation, event.tenant_id)
        except AuthorizationDenied as exc:
            logger.info("Denied %s for user %s in tenant %s (%s)", name, actor.user_id, event.tenant_id, exc.reason)
            return None
        except UnknownCommand:
            logger.debug("Ignoring unknown command %s in tenant %s", name, event.tenant_id)
            return None

        context = CommandContext(invocation=invocation, tenant_id=event.tenant_id, channel_id=event.channel_id, actor=actor, services=self.services)
        try:
            reply = await command.execute(context)
        except NoReply:
            return None
        except AuthorizationDenied as exc:
            logger.info("Denied %s for user %s in tenant %s (%s)", name, actor.user_id, event.tenant_id, exc.reason)
            return None
        except ChatWardenError as exc:
            logger.info("Command %s failed in tenant %s: %s", name, event.tenant_id, exc)
            reply = str(exc) or None
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Unexpected error executing %s in tenant %s", name, event.tenant_id)
            reply = str(exc) or None

        if not reply:
            return None
        if not event.can_send_in_channel:
            logger.debug("Cannot send in channel %s; dropping reply to %s", event.channel_id, name)
            return None
        return reply

    async def on_tenant_join(self, tenant_id: str, owner_id: Optional[str] = None) -> None:
        """Seed the default grants of a newly joined tenant.

        Args:
            tenant_id: Tenant id.
            owner_id: Tenant owner, granted the management commands.
        """
        try:
            await self.policy.seed_tenant(tenant_id, self.init_allow_commands)
            if owner_id:
                for name in self.owner_commands:
                    await self.policy.change(tenant_id, name, PolicyChange.grant(users=[owner_id]))
        except (StorageUnavailable, TenantRemovedError) as exc:
            logger.error("Could not seed permissions for tenant %s: %s", tenant_id, exc)

    async def on_tenant_leave(self, tenant_id: str) -> None:
        """Drop every piece of state held for a tenant that left.

        Args:
            tenant_id: Tenant id.
        """
        try:
            await self.policy.remove_server(tenant_id)
            await self.registry.remove_tenant(tenant_id)
            if self.emoji_collector is not None:
                await self.emoji_collector.remove_tenant(tenant_id)
        except StorageUnavailable as exc:
            logger.error("Could not remove state of tenant %s: %s", tenant_id, exc)
