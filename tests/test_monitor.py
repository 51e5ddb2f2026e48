"""Tests for the per-service polling monitor."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from conftest import FakeSource, RecordingSink, no_sleep, unavailable
from logfeed.monitoring.monitor import MonitorState, ServiceMonitor
from logfeed.sources import LocalFileSource
from logfeed.utils.discord_sink import DiscordChannelSink
from logfeed.utils.feed_map import FeedMap
from logfeed.utils.notification_router import NotificationRouter

LOG_DIR = "/games/ni7_1/noftp/dayzps/config"
ADM = f"{LOG_DIR}/DayZServer_x64_2024_06_01.ADM"
RPT = f"{LOG_DIR}/DayZServer_x64_2024_06_01.RPT"

DESTINATIONS = {"killfeed": 111, "connections": 222, "admin": 333}


def _make_monitor(source, sink=None, clock=None, **overrides):
    feed_map = FeedMap.load(destinations=DESTINATIONS)
    router = NotificationRouter(sink or RecordingSink(), lambda: feed_map, clock=clock)
    options = dict(log_path=LOG_DIR, inter_file_delay=0, sleep=no_sleep, clock=clock)
    options.update(overrides)
    return ServiceMonitor("7", source, router, **options)


@pytest.mark.asyncio
async def test_tick_processes_new_lines_once(clock):
    source = FakeSource()
    source.write(ADM, b'Player "Ann" (id=A1) is connected\n')
    sink = RecordingSink()
    monitor = _make_monitor(source, sink, clock)
    monitor.start()

    await monitor.tick()
    await monitor.tick()

    assert monitor.events_processed == 1
    assert monitor.checks_completed == 2
    assert [p.name for p in monitor.current_players()] == ["Ann"]
    assert [dest for dest, _, _ in sink.sent] == [222]

    source.append(ADM, b'Player "Ann" (id=A1) has been disconnected\n')
    await monitor.tick()

    assert monitor.events_processed == 2
    assert monitor.current_players() == []


@pytest.mark.asyncio
async def test_failure_on_one_file_does_not_block_the_other(clock):
    source = FakeSource()
    source.write(ADM, b'Player "Ann" is connected\n')
    source.write(RPT, b"Broadcast: restart in 5 minutes\n")
    source.fail_downloads[RPT] = unavailable()
    monitor = _make_monitor(source, clock=clock)
    monitor.start()

    await monitor.tick()

    status = monitor.status()
    assert status.events_processed == 1
    assert status.errors == 1
    assert status.consecutive_errors == 1
    assert status.active
    assert monitor.tracker.offset_for(RPT) == 0


@pytest.mark.asyncio
async def test_circuit_breaker_trips_after_consecutive_failures(clock):
    source = FakeSource({ADM: b"x\n"})
    source.fail_list = unavailable()
    scheduler = MagicMock()
    monitor = _make_monitor(source, clock=clock, scheduler=scheduler, max_errors=10)
    monitor.start()

    for _ in range(10):
        await monitor.tick()

    status = monitor.status()
    assert status.active is False
    assert status.state == MonitorState.TRIPPED.value
    assert status.errors == 10
    scheduler.remove_job.assert_called_with(monitor.job_id)

    await monitor.tick()
    assert source.list_calls == 10


@pytest.mark.asyncio
async def test_successful_tick_resets_consecutive_errors(clock):
    source = FakeSource({ADM: b"x\n"})
    source.fail_list = unavailable()
    monitor = _make_monitor(source, clock=clock)
    monitor.start()

    for _ in range(5):
        await monitor.tick()
    source.fail_list = None
    await monitor.tick()

    assert monitor.consecutive_errors == 0
    assert monitor.errors == 5
    assert monitor.active


@pytest.mark.asyncio
async def test_overlapping_tick_is_skipped(clock):
    source = FakeSource({ADM: b'Player "Ann" is connected\n'})
    source.list_gate = asyncio.Event()
    monitor = _make_monitor(source, clock=clock)
    monitor.start()

    first = asyncio.create_task(monitor.tick())
    await asyncio.sleep(0)
    assert monitor.is_tick_running

    await monitor.tick()
    assert source.list_calls == 1

    source.list_gate.set()
    await first
    assert monitor.checks_completed == 1
    assert not monitor.is_tick_running


@pytest.mark.asyncio
async def test_stop_mid_tick_lets_tick_finish(clock):
    source = FakeSource({ADM: b'Player "Ann" is connected\n'})
    source.list_gate = asyncio.Event()
    monitor = _make_monitor(source, clock=clock)
    monitor.start()

    running = asyncio.create_task(monitor.tick())
    await asyncio.sleep(0)
    report = monitor.stop()
    source.list_gate.set()
    await running

    assert report.checks_completed == 0
    assert monitor.checks_completed == 1
    assert monitor.state == MonitorState.IDLE

    await monitor.tick()
    assert source.list_calls == 1


def test_scheduler_job_lifecycle(clock):
    scheduler = MagicMock()
    monitor = _make_monitor(FakeSource(), clock=clock, scheduler=scheduler, interval=300)

    monitor.start()
    _, kwargs = scheduler.add_job.call_args
    assert kwargs["id"] == "log_monitor_7"
    assert kwargs["seconds"] == 300
    assert kwargs["max_instances"] == 1

    assert monitor.update_interval(30) == 120
    scheduler.reschedule_job.assert_called_once_with("log_monitor_7", trigger="interval", seconds=120)

    clock.advance(90)
    report = monitor.stop()
    scheduler.remove_job.assert_called_once_with("log_monitor_7")
    assert report.uptime.total_seconds() == 90


def test_interval_floor_applies_at_construction(clock):
    monitor = _make_monitor(FakeSource(), clock=clock, interval=10)
    assert monitor.interval == 120


@pytest.mark.asyncio
async def test_rotation_is_counted_and_reread(clock):
    source = FakeSource({ADM: b'Player "Ann" is connected\n' * 20})
    monitor = _make_monitor(source, clock=clock)
    monitor.start()
    await monitor.tick()

    source.write(ADM, b"AdminLog started on 2024-06-02 at 06:00:00\n")
    await monitor.tick()

    assert monitor.status().rotations == 1
    assert monitor.current_players() == []


@pytest.mark.asyncio
async def test_offsets_and_effects_are_persisted(clock):
    source = FakeSource({ADM: b'Player "Ann" is connected\n'})
    database = AsyncMock()
    monitor = _make_monitor(source, clock=clock, database=database)
    monitor.start()

    await monitor.tick()

    database.save_file_offset.assert_awaited_once_with("7", ADM, len(source.files[ADM]))
    database.persist_effects.assert_awaited_once()


@pytest.mark.asyncio
async def test_reads_local_directory(tmp_path, clock):
    log_dir = tmp_path / "logs"
    log_dir.mkdir()
    adm = log_dir / "DayZServer.ADM"
    adm.write_text('Player "Ann" is connected\n')
    sink = RecordingSink()
    monitor = _make_monitor(LocalFileSource(tmp_path), sink, clock, log_path="/logs")
    monitor.start()

    await monitor.tick()
    with open(adm, "a") as f:
        f.write('Kill: "Ann" killed "Bob" with "AKM"\n')
    await monitor.tick()

    assert monitor.events_processed == 2
    assert [dest for dest, _, _ in sink.sent] == [222, 111]
    assert monitor.recent_kills()[0].weapon == "AKM"


@pytest.mark.asyncio
async def test_breaker_trips_on_repeated_download_failures(clock):
    source = FakeSource({ADM: b'Player "Ann" is connected\n'})
    source.fail_downloads[ADM] = unavailable()
    monitor = _make_monitor(source, clock=clock, max_errors=10)
    monitor.start()

    for _ in range(9):
        await monitor.tick()
    assert monitor.active

    await monitor.tick()

    assert monitor.state == MonitorState.TRIPPED
    assert source.list_calls == 10
    assert monitor.tracker.offset_for(ADM) == 0


@pytest.mark.asyncio
async def test_discord_outage_does_not_fail_the_file(clock):
    channel = MagicMock()
    channel.send = AsyncMock(side_effect=aiohttp.ClientConnectionError("connection reset"))
    bot = MagicMock()
    bot.get_channel.return_value = channel
    source = FakeSource({ADM: b'Player "Ann" is connected\n'})
    monitor = _make_monitor(source, DiscordChannelSink(bot), clock)
    monitor.start()

    for _ in range(3):
        await monitor.tick()

    assert channel.send.await_count == 1
    assert monitor.router.failed == 1
    assert monitor.errors == 0
    assert monitor.consecutive_errors == 0
    assert monitor.tracker.offset_for(ADM) == len(source.files[ADM])
    assert monitor.summary(timedelta(hours=1)).connections == 1


@pytest.mark.asyncio
async def test_unexpected_routing_error_is_contained(clock):
    class BrokenSink:
        async def send(self, destination, event, template):
            raise RuntimeError("boom")

    source = FakeSource({ADM: b'Player "Ann" is connected\n'})
    monitor = _make_monitor(source, BrokenSink(), clock)
    monitor.start()

    await monitor.tick()
    await monitor.tick()

    assert monitor.errors == 0
    assert monitor.events_processed == 1
    assert monitor.tracker.offset_for(ADM) == len(source.files[ADM])


@pytest.mark.asyncio
async def test_vanished_files_stop_being_tracked(clock):
    old = f"{LOG_DIR}/DayZServer_x64_2024_05_31.ADM"
    source = FakeSource({old: b"x\n"})
    monitor = _make_monitor(source, clock=clock)
    monitor.start()
    await monitor.tick()
    assert old in monitor.tracker.files

    del source.files[old]
    source.write(ADM, b'Player "Ann" is connected\n')
    await monitor.tick()

    assert old not in monitor.tracker.files
    assert ADM in monitor.tracker.files


@pytest.mark.asyncio
async def test_stop_mid_tick_skips_remaining_files(clock):
    source = FakeSource()
    source.write(ADM, b'Player "Ann" is connected\n')
    source.write(RPT, b"Broadcast: restart in 5 minutes\n")
    monitor = _make_monitor(source, clock=clock)
    monitor.start()

    async def stop_between_files(_delay):
        monitor.stop()

    monitor._sleep = stop_between_files
    await monitor.tick()

    assert source.download_calls == 1
    assert monitor.errors == 0
