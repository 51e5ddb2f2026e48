"""
Logfeed - Bot Entry Point
"""

import logging
import sys

import discord
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from motor.motor_asyncio import AsyncIOMotorClient

from logfeed.config import BotConfig
from logfeed.models.database import DatabaseManager
from logfeed.monitoring import LogFeedService
from logfeed.utils.discord_sink import DiscordChannelSink
from logfeed.utils.logging_setup import setup_logging

logger = logging.getLogger(__name__)


class LogfeedBot(discord.Bot):
    def __init__(self):
        intents = discord.Intents.default()
        super().__init__(intents=intents)
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.mongo_client = AsyncIOMotorClient(BotConfig.MONGO_URI)
        self.db_manager = DatabaseManager(self.mongo_client, BotConfig.MONGO_DB)
        self.logfeed = LogFeedService(
            DiscordChannelSink(self),
            self.scheduler,
            database=self.db_manager,
        )
        self._monitors_started = False
        self.load_extension("logfeed.cogs.monitoring")

    async def on_ready(self):
        logger.info(f"✅ Logged in as {self.user} ({len(self.guilds)} guilds)")
        if self._monitors_started:
            return
        self._monitors_started = True

        await self.db_manager.initialize_indexes()
        if not self.scheduler.running:
            self.scheduler.start()
        await self.logfeed.start_configured()

    async def close(self):
        await self.logfeed.stop_all()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.mongo_client.close()
        await super().close()


def main():
    setup_logging(BotConfig.LOG_LEVEL)
    missing = BotConfig.validate()
    if missing:
        logger.error(f"Missing required settings: {', '.join(missing)}")
        sys.exit(1)

    bot = LogfeedBot()
    bot.run(BotConfig.DISCORD_TOKEN)


if __name__ == "__main__":
    main()
