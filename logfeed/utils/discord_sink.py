"""
Logfeed - Discord Channel Sink
Delivers feed embeds to Discord text channels with one attempt per message
"""

import asyncio
import logging

import aiohttp
import discord

from logfeed.models.events import LogEvent
from logfeed.utils.embed_factory import EmbedFactory
from logfeed.utils.feed_map import FeedTemplate
from logfeed.utils.notification_router import DispatchError

logger = logging.getLogger(__name__)

# py-cord re-raises these unchanged when the gateway or REST connection drops
TRANSPORT_ERRORS = (aiohttp.ClientError, OSError, asyncio.TimeoutError)


class DiscordChannelSink:
    """Notification sink backed by a py-cord bot"""

    def __init__(self, bot):
        self.bot = bot

    async def _resolve_channel(self, channel_id: int):
        channel = self.bot.get_channel(channel_id)
        if channel is not None:
            return channel
        try:
            return await self.bot.fetch_channel(channel_id)
        except (discord.NotFound, discord.Forbidden) as e:
            raise DispatchError(f"Channel {channel_id} unavailable: {e}") from e
        except discord.HTTPException as e:
            raise DispatchError(f"Could not fetch channel {channel_id}: {e}") from e
        except TRANSPORT_ERRORS as e:
            raise DispatchError(f"Connection error fetching channel {channel_id}: {e!r}") from e

    async def send(self, channel_id: int, event: LogEvent, template: FeedTemplate):
        channel = await self._resolve_channel(channel_id)
        embed = EmbedFactory.build_event(event, template)
        try:
            await channel.send(embed=embed)
        except discord.Forbidden as e:
            raise DispatchError(f"Missing permissions for channel {channel_id}") from e
        except discord.HTTPException as e:
            if e.status == 429:
                logger.warning(f"⏳ Rate limited sending to channel {channel_id}, dropping message")
            raise DispatchError(f"Discord rejected message for {channel_id}: {e}") from e
        except TRANSPORT_ERRORS as e:
            raise DispatchError(f"Connection error sending to channel {channel_id}: {e!r}") from e
