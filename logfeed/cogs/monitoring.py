"""
Logfeed - Monitoring Commands
Read-only views over the running log monitors
"""

import logging
from datetime import timedelta

import discord
from discord import Option
from discord.ext import commands

from logfeed.utils.embed_factory import EmbedFactory

logger = logging.getLogger(__name__)


class Monitoring(commands.Cog):
    """
    LOG MONITORING
    - Monitor status per Nitrado service
    - Activity summaries
    - Online players
    """

    def __init__(self, bot):
        self.bot = bot

    logfeed = discord.SlashCommandGroup("logfeed", "Log monitor commands")

    @property
    def service(self):
        return self.bot.logfeed

    @logfeed.command(name="status", description="Show log monitor status")
    async def status(self, ctx: discord.ApplicationContext,
                     service_id: Option(str, "Nitrado service id", required=False) = None):
        if service_id:
            status = self.service.get_status(service_id)
            if status is None:
                await ctx.respond(f"❌ Service {service_id} is not monitored", ephemeral=True)
                return
            await ctx.respond(embed=EmbedFactory.build_status(service_id, status))
            return

        monitors = self.service.get_all_monitors()
        if not monitors:
            await ctx.respond("No services are being monitored", ephemeral=True)
            return
        embeds = [EmbedFactory.build_status(sid, status) for sid, status in list(monitors.items())[:10]]
        await ctx.respond(embeds=embeds)

    @logfeed.command(name="summary", description="Activity counts for a service")
    async def summary(self, ctx: discord.ApplicationContext,
                      service_id: Option(str, "Nitrado service id"),
                      hours: Option(int, "Window in hours", min_value=1, max_value=168, default=24)):
        window = timedelta(hours=hours)
        summary = self.service.summary(service_id, window)
        if summary is None:
            await ctx.respond(f"❌ Service {service_id} is not monitored", ephemeral=True)
            return
        await ctx.respond(embed=EmbedFactory.build_summary(service_id, summary, window))

    @logfeed.command(name="players", description="Players currently online")
    async def players(self, ctx: discord.ApplicationContext,
                      service_id: Option(str, "Nitrado service id")):
        if self.service.get_status(service_id) is None:
            await ctx.respond(f"❌ Service {service_id} is not monitored", ephemeral=True)
            return
        players = self.service.current_players(service_id)
        await ctx.respond(embed=EmbedFactory.build_players(service_id, players))


def setup(bot):
    bot.add_cog(Monitoring(bot))
