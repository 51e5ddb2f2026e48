"""Tests for feed and status embeds."""

from datetime import timedelta

from conftest import START
from logfeed.models.events import ConnectionFields, EventCategory, KillFields, LogEvent
from logfeed.monitoring.monitor import MonitorStatus
from logfeed.utils.embed_factory import EmbedFactory, format_duration
from logfeed.utils.feed_map import FeedMap


def test_format_duration():
    assert format_duration(timedelta(seconds=42)) == "42s"
    assert format_duration(timedelta(minutes=5, seconds=3)) == "5m 3s"
    assert format_duration(timedelta(hours=26, minutes=1)) == "26h 1m"


def test_kill_embed_uses_feed_template():
    template = FeedMap.load().template_for(EventCategory.KILL)
    event = LogEvent("7", START, EventCategory.KILL,
                     KillFields(killer="A", victim="B", weapon="AKM", distance=87.4), "raw")

    embed = EmbedFactory.build_event(event, template)

    assert embed.colour.value == template.color
    assert "**A**" in embed.description
    values = {field.name: field.value for field in embed.fields}
    assert values["Weapon"] == "AKM"
    assert values["Distance"] == "87 m"


def test_approximate_time_is_flagged_in_footer():
    template = FeedMap.load().template_for(EventCategory.CONNECTION)
    event = LogEvent("7", START, EventCategory.CONNECTION, ConnectionFields(player="Ann"), "raw",
                     approximate_timestamp=True)

    embed = EmbedFactory.build_event(event, template)

    assert "approximate" in embed.footer.text
    assert "Ann" in embed.description


def test_status_embed_for_tripped_monitor():
    status = MonitorStatus(active=False, state="tripped", last_check=None, checks_completed=3,
                           events_processed=0, errors=10, consecutive_errors=10, interval=300.0,
                           files_tracked=2, rotations=0)

    embed = EmbedFactory.build_status("7", status)

    assert embed.colour.value == EmbedFactory.COLORS['status_tripped']
    assert "TRIPPED" in embed.description
