"""
Logfeed - Embed Factory
Consistent Discord embeds for feed events and monitor reports
"""

import random
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import discord

from logfeed.models.events import (
    AdminActionFields, BroadcastFields, BuildingFields, ConnectionFields,
    DeathFields, DisconnectionFields, DynamicEventFields, EventCategory,
    KillFields, LogEvent, RaidFields, VehicleFields,
)
from logfeed.utils.feed_map import FeedTemplate

FOOTER = "Logfeed • Nitrado log monitor"


def format_duration(delta: timedelta) -> str:
    seconds = int(delta.total_seconds())
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


class EmbedFactory:
    """Builds embeds; every method is a classmethod and holds no state"""

    COLORS = {
        'status_active': 0x4caf50,
        'status_idle': 0x9e9e9e,
        'status_tripped': 0xc62828,
        'summary': 0x3498db,
        'players': 0x00bcd4,
        'default': 0x9e9e9e,
    }

    COMBAT_LOGS = {
        'kill': [
            "Another one for the graveyard.",
            "Chernarus claims another survivor.",
            "The coast just got quieter.",
            "Nobody saw it coming.",
        ],
        'suicide': [
            "Took the easy way out.",
            "The wasteland wins again.",
        ],
    }

    @classmethod
    def create_embed(cls, title: str, description: str = None, color: int = None,
                     fields: List[Dict[str, Any]] = None, timestamp: datetime = None,
                     footer_text: str = None) -> discord.Embed:
        embed = discord.Embed(
            title=title,
            description=description,
            color=color if color is not None else cls.COLORS['default'],
            timestamp=timestamp or datetime.now(timezone.utc),
        )
        for field in fields or []:
            embed.add_field(
                name=field.get('name', "\u200b"),
                value=field.get('value') or "\u200b",
                inline=field.get('inline', True),
            )
        embed.set_footer(text=footer_text or FOOTER)
        return embed

    @classmethod
    def build_event(cls, event: LogEvent, template: FeedTemplate) -> discord.Embed:
        """Embed for one feed event"""
        builder = {
            EventCategory.KILL: cls._build_kill,
            EventCategory.CONNECTION: cls._build_connection,
            EventCategory.DISCONNECTION: cls._build_connection,
        }.get(event.category, cls._build_generic)
        embed = builder(event, template)
        if event.approximate_timestamp:
            embed.set_footer(text=f"{FOOTER} • time approximate")
        return embed

    @classmethod
    def _build_kill(cls, event: LogEvent, template: FeedTemplate) -> discord.Embed:
        kill: KillFields = event.fields
        killer = kill.killer or "Unknown"
        victim = kill.victim or "Unknown"

        if kill.is_suicide:
            description = f"**{victim}** took their own life"
            flavor = random.choice(cls.COMBAT_LOGS['suicide'])
        else:
            description = f"**{killer}**\neliminated\n**{victim}**"
            flavor = random.choice(cls.COMBAT_LOGS['kill'])

        fields = []
        if kill.weapon:
            fields.append({'name': "Weapon", 'value': kill.weapon})
        if kill.distance is not None:
            fields.append({'name': "Distance", 'value': f"{kill.distance:.0f} m"})
        if kill.hit_zone:
            fields.append({'name': "Hit", 'value': kill.hit_zone.title()})
        fields.append({'name': "\u200b", 'value': f"*{flavor}*", 'inline': False})

        return cls.create_embed(template.title.upper(), description, template.color,
                                fields, event.timestamp)

    @classmethod
    def _build_connection(cls, event: LogEvent, template: FeedTemplate) -> discord.Embed:
        fields = event.fields
        player = getattr(fields, 'player', None) or "Unknown survivor"
        phase = getattr(fields, 'phase', '').replace('_', ' ')
        if isinstance(fields, ConnectionFields):
            description = f"**{player}** joined the server"
        elif isinstance(fields, DisconnectionFields) and fields.phase.startswith('logout'):
            description = f"**{player}** {phase}"
        else:
            description = f"**{player}** left the server"
        return cls.create_embed(template.title, description, template.color, timestamp=event.timestamp)

    @classmethod
    def _build_generic(cls, event: LogEvent, template: FeedTemplate) -> discord.Embed:
        fields = event.fields
        details = []

        if isinstance(fields, DeathFields):
            details.append({'name': "Player", 'value': fields.player or "Unknown"})
            if fields.cause:
                details.append({'name': "Cause", 'value': fields.cause})
        elif isinstance(fields, (BuildingFields, RaidFields)):
            details.append({'name': "Player", 'value': fields.player or "Unknown"})
            target = fields.item if isinstance(fields, BuildingFields) else fields.target
            if target:
                details.append({'name': "Target", 'value': target})
        elif isinstance(fields, DynamicEventFields) and fields.event_name:
            details.append({'name': "Event", 'value': fields.event_name})
        elif isinstance(fields, VehicleFields) and fields.vehicle:
            details.append({'name': "Vehicle", 'value': fields.vehicle})
        elif isinstance(fields, AdminActionFields):
            details.append({'name': "Admin", 'value': fields.admin or "Unknown"})
            if fields.target:
                details.append({'name': "Target", 'value': fields.target})
        elif isinstance(fields, BroadcastFields) and fields.is_restart:
            details.append({'name': "Status", 'value': "Server restart detected"})

        position = getattr(fields, 'position', None)
        if position is not None:
            details.append({'name': "Location", 'value': str(position)})

        description = f"```{event.raw_line[:1000]}```"
        return cls.create_embed(template.title, description, template.color, details, event.timestamp)

    @classmethod
    def build_status(cls, service_id: str, status) -> discord.Embed:
        color = cls.COLORS['status_active'] if status.active else (
            cls.COLORS['status_tripped'] if status.state == 'tripped' else cls.COLORS['status_idle'])
        last_check = status.last_check.strftime('%Y-%m-%d %H:%M:%S UTC') if status.last_check else "Never"
        return cls.create_embed(
            f"📡 Log Monitor • Service {service_id}",
            f"State: **{status.state.upper()}**",
            color,
            [
                {'name': "Last Check", 'value': last_check},
                {'name': "Checks", 'value': str(status.checks_completed)},
                {'name': "Events", 'value': str(status.events_processed)},
                {'name': "Errors", 'value': f"{status.errors} ({status.consecutive_errors} consecutive)"},
                {'name': "Interval", 'value': f"{status.interval:.0f}s"},
                {'name': "Files", 'value': str(status.files_tracked)},
            ],
        )

    @classmethod
    def build_summary(cls, service_id: str, summary, window: timedelta) -> discord.Embed:
        return cls.create_embed(
            f"📊 Activity • last {format_duration(window)}",
            f"Service {service_id}",
            cls.COLORS['summary'],
            [
                {'name': "Kills", 'value': str(summary.kills)},
                {'name': "Deaths", 'value': str(summary.deaths)},
                {'name': "Connections", 'value': str(summary.connections)},
                {'name': "Disconnections", 'value': str(summary.disconnections)},
                {'name': "Building", 'value': str(summary.building_events)},
                {'name': "Economy", 'value': str(summary.economy_events)},
            ],
        )

    @classmethod
    def build_players(cls, service_id: str, players: list) -> discord.Embed:
        if players:
            lines = [f"**{p.name}** • {format_duration(p.session_duration)}" for p in players[:25]]
            if len(players) > 25:
                lines.append(f"...and {len(players) - 25} more")
            description = "\n".join(lines)
        else:
            description = "No survivors online"
        return cls.create_embed(f"👥 Online Players ({len(players)})", description,
                                cls.COLORS['players'])
