# -*- coding: utf-8 -*-
"""Location: ./chatwarden/transports/discord_transport.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

Discord transport built on discord.py.

Converts gateway messages into ``InboundMessage`` values, hands them to the
``MessageHandler`` and sends back whatever reply it produces. Guild join and
remove events are forwarded as tenant lifecycle hooks. An owned background
task keeps the bot's presence showing its uptime.

Examples:
    >>> format_uptime(3720)
    '1h 2m'
    >>> format_uptime(90061)
    '1d 1h 1m'
    >>> format_uptime(5)
    '0m'
"""

# Future
from __future__ import annotations

# Standard
import asyncio
import logging
import time
from typing import Any, Optional

# Third-Party
import discord

# First-Party
from chatwarden.models import InboundMessage
from chatwarden.services.message_handler import MessageHandler

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000

TENANT_TEXT_CHANNELS = frozenset(
    {
        discord.ChannelType.text,
        discord.ChannelType.news,
        discord.ChannelType.public_thread,
        discord.ChannelType.private_thread,
        discord.ChannelType.news_thread,
    }
)


def format_uptime(seconds: float) -> str:
    """Render a duration as ``[Nd ][Nh ]Nm``.

    Args:
        seconds: Elapsed seconds.

    Returns:
        str: Compact duration.
    """
    minutes_total = int(seconds) // 60
    days, rest = divmod(minutes_total, 24 * 60)
    hours, minutes = divmod(rest, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if days or hours:
        parts.append(f"{hours}h")
    parts.append(f"{minutes}m")
    return " ".join(parts)


def to_inbound(message: Any, bot_user_id: Optional[int]) -> InboundMessage:
    """Convert a discord.py message into an ``InboundMessage``.

    Args:
        message: ``discord.Message`` (or an object with the same attributes).
        bot_user_id: Id of the connected bot user.

    Returns:
        InboundMessage: Transport-neutral message.
    """
    guild = message.guild
    author = message.author
    channel = message.channel
    in_guild = guild is not None
    roles = getattr(author, "roles", None) or []
    can_send = False
    if in_guild:
        permissions = channel.permissions_for(guild.me)
        can_send = bool(permissions.send_messages)
    return InboundMessage(
        author_id=str(author.id),
        tenant_id=str(guild.id) if in_guild else "",
        channel_id=str(channel.id),
        text=message.content or "",
        is_bot=bool(author.bot),
        can_send_in_channel=can_send,
        author_group_ids=frozenset(str(role.id) for role in roles),
        is_self=bot_user_id is not None and author.id == bot_user_id,
        is_tenant_text_channel=in_guild and getattr(channel, "type", None) in TENANT_TEXT_CHANNELS,
    )


class DiscordTransport(discord.Client):
    """discord.py client delivering messages to a ``MessageHandler``."""

    def __init__(self, handler: MessageHandler, status_interval: float = 60.0) -> None:
        """Create the client.

        Args:
            handler: Message handler.
            status_interval: Seconds between presence updates.
        """
        intents = discord.Intents.none()
        intents.guilds = True
        intents.guild_messages = True
        intents.message_content = True
        super().__init__(
            intents=intents,
            allowed_mentions=discord.AllowedMentions(everyone=False, roles=False, users=True),
            member_cache_flags=discord.MemberCacheFlags.none(),
            chunk_guilds_at_startup=False,
        )
        self.handler = handler
        self.status_interval = status_interval
        self._started_at = time.monotonic()
        self._presence_task: Optional[asyncio.Task] = None

    async def setup_hook(self) -> None:
        """Start the presence task once the client is logged in."""
        self._started_at = time.monotonic()
        self._presence_task = asyncio.create_task(self._presence_loop())

    async def close(self) -> None:
        """Stop the presence task and disconnect."""
        if self._presence_task is not None:
            self._presence_task.cancel()
            try:
                await self._presence_task
            except asyncio.CancelledError:
                pass
            self._presence_task = None
        await super().close()

    async def on_ready(self) -> None:
        """Log the connected identity."""
        logger.info("Connected as %s to %d guilds", self.user, len(self.guilds))

    async def on_message(self, message: discord.Message) -> None:
        """Handle one gateway message.

        Args:
            message: Message received.
        """
        event = to_inbound(message, self.user.id if self.user else None)
        reply = await self.handler.handle(event)
        if not reply:
            return
        try:
            await message.channel.send(reply[:MAX_MESSAGE_LENGTH])
        except discord.HTTPException as exc:
            logger.warning("Failed to send reply in channel %s: %s", event.channel_id, exc)

    async def on_guild_join(self, guild: discord.Guild) -> None:
        """Seed permissions for a new guild."""
        logger.info("Joined guild %s (%s)", guild.name, guild.id)
        await self.handler.on_tenant_join(str(guild.id), owner_id=str(guild.owner_id) if guild.owner_id else None)

    async def on_guild_remove(self, guild: discord.Guild) -> None:
        """Drop every piece of state held for a guild the bot left."""
        logger.info("Left guild %s (%s)", guild.name, guild.id)
        await self.handler.on_tenant_leave(str(guild.id))

    async def _presence_loop(self) -> None:
        await self.wait_until_ready()
        while not self.is_closed():
            try:
                await self.change_presence(activity=discord.Game(name=f"Up: {format_uptime(time.monotonic() - self._started_at)}"))
            except discord.HTTPException as exc:
                logger.debug("Presence update failed: %s", exc)
            await asyncio.sleep(self.status_interval)
