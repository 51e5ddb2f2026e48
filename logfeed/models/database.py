"""
Logfeed - Database Models
Guild server configs, file offsets, sessions and kill history in MongoDB
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from logfeed.parsers.session_tracker import (
    ActivityCounted, AllSessionsClosed, DeathRecorded, KillRecorded,
    SessionClosed, SessionOpened, SessionRefreshed,
)

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Storage layout:
    - Server configs (service id, token, feed channels) live on the guild document
    - File offsets, sessions, kills and PvP tallies are keyed by service id

    Write failures are logged and never interrupt a polling tick.
    """

    def __init__(self, mongo_client: AsyncIOMotorClient, db_name: str = "logfeed"):
        self.client = mongo_client
        self.db: AsyncIOMotorDatabase = mongo_client[db_name]

        # Collections
        self.guilds = self.db.guilds
        self.parser_states = self.db.parser_states
        self.player_sessions = self.db.player_sessions
        self.kill_events = self.db.kill_events
        self.pvp_data = self.db.pvp_data

    async def initialize_indexes(self):
        """Create database indexes"""
        try:
            await self.guilds.create_index("guild_id", unique=True)
            await self.parser_states.create_index([("service_id", 1), ("file_path", 1)], unique=True)
            await self.player_sessions.create_index([("service_id", 1), ("player_name", 1)], unique=True)
            await self.player_sessions.create_index([("service_id", 1), ("state", 1)])
            await self.kill_events.create_index([("service_id", 1), ("timestamp", -1)])
            await self.pvp_data.create_index([("service_id", 1), ("player_name", 1)], unique=True)
            logger.info("Database indexes created successfully")
        except PyMongoError as e:
            logger.error(f"Failed to create database indexes: {e}")

    async def get_monitored_services(self) -> List[Dict[str, Any]]:
        """Every enabled server across all guilds, with the guild's feed channels merged in"""
        services = []
        try:
            async for guild_doc in self.guilds.find({}):
                guild_channels = guild_doc.get("channels") or {}
                for server in guild_doc.get("servers", []):
                    if not server.get("enabled", True):
                        continue
                    channels = dict(guild_channels)
                    channels.update(server.get("channels") or {})
                    services.append({
                        **server,
                        "guild_id": guild_doc.get("guild_id"),
                        "service_id": str(server.get("service_id", "")),
                        "channels": {k: v for k, v in channels.items() if v},
                    })
        except PyMongoError as e:
            logger.error(f"Failed to load monitored services: {e}")
        return services

    # FILE OFFSETS
    async def get_file_offsets(self, service_id: str) -> Dict[str, int]:
        try:
            offsets = {}
            async for state in self.parser_states.find({"service_id": service_id}):
                offsets[state["file_path"]] = int(state.get("offset", 0))
            return offsets
        except PyMongoError as e:
            logger.error(f"Failed to load file offsets for {service_id}: {e}")
            return {}

    async def save_file_offset(self, service_id: str, file_path: str, offset: int):
        try:
            await self.parser_states.update_one(
                {"service_id": service_id, "file_path": file_path},
                {
                    "$set": {
                        "service_id": service_id,
                        "file_path": file_path,
                        "offset": offset,
                        "last_updated": datetime.now(timezone.utc),
                    }
                },
                upsert=True,
            )
            logger.debug(f"Saved offset {offset} for {file_path}")
        except PyMongoError as e:
            logger.error(f"Failed to save file offset for {file_path}: {e}")

    # SESSION AND KILL EFFECTS
    async def persist_effects(self, service_id: str, effects: List[Any]):
        """Write the effects the session tracker has already applied in memory"""
        for effect in effects:
            try:
                if isinstance(effect, (SessionOpened, SessionRefreshed)):
                    update = {"state": "online", "last_seen_at": effect.at}
                    if isinstance(effect, SessionOpened):
                        update["connected_at"] = effect.at
                    await self.player_sessions.update_one(
                        {"service_id": service_id, "player_name": effect.player},
                        {"$set": update, "$setOnInsert": {"first_seen_at": effect.at}},
                        upsert=True,
                    )
                elif isinstance(effect, SessionClosed):
                    await self.player_sessions.update_one(
                        {"service_id": service_id, "player_name": effect.player},
                        {"$set": {"state": "offline", "last_seen_at": effect.at}},
                        upsert=True,
                    )
                elif isinstance(effect, AllSessionsClosed):
                    await self.player_sessions.update_many(
                        {"service_id": service_id, "state": "online"},
                        {"$set": {"state": "offline", "last_seen_at": effect.at}},
                    )
                elif isinstance(effect, KillRecorded):
                    await self.add_kill_event(service_id, effect.kill)
                elif isinstance(effect, DeathRecorded):
                    await self._increment_pvp(service_id, effect.player, {"deaths": 1})
                elif isinstance(effect, ActivityCounted):
                    continue
            except PyMongoError as e:
                logger.error(f"Failed to persist {type(effect).__name__} for {service_id}: {e}")

    async def add_kill_event(self, service_id: str, kill):
        distance = max(0.0, min(kill.distance or 0.0, 5000.0))
        await self.kill_events.insert_one({
            "service_id": service_id,
            "timestamp": kill.at,
            "killer": kill.killer or "",
            "victim": kill.victim or "",
            "weapon": kill.weapon or "",
            "distance": distance,
            "location": kill.location,
            "is_suicide": kill.suicide,
        })
        if kill.victim:
            await self._increment_pvp(service_id, kill.victim, {"deaths": 1})
        if kill.killer and not kill.suicide:
            await self._increment_pvp(service_id, kill.killer, {"kills": 1, "total_distance": distance})
        logger.debug(f"Added kill event: {kill.killer} -> {kill.victim} ({distance}m)")

    async def _increment_pvp(self, service_id: str, player_name: str, increments: Dict[str, float]):
        await self.pvp_data.update_one(
            {"service_id": service_id, "player_name": player_name},
            {"$inc": increments, "$set": {"last_updated": datetime.now(timezone.utc)}},
            upsert=True,
        )
