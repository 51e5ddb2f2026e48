"""Tests for the ordered line classifier."""

from datetime import datetime, timezone

import pytest

from conftest import START
from logfeed.models.events import (
    BroadcastFields, ConnectionFields, EventCategory, KillFields, LogEvent,
    Position, UnrecognizedFields,
)
from logfeed.parsers.log_classifier import LineClassifier, extract_timestamp


@pytest.fixture
def classifier():
    return LineClassifier()


def _classify(classifier, line):
    return classifier.classify(line, service_id="42", source_file="DayZServer.ADM", now=START)


def test_blank_lines_yield_nothing(classifier):
    assert _classify(classifier, "") is None
    assert _classify(classifier, "   \r\n") is None


def test_unmatched_line_is_preserved_as_unrecognized(classifier):
    line = "lorem ipsum 42"

    event = _classify(classifier, line)

    assert event.category == EventCategory.UNRECOGNIZED
    assert isinstance(event.fields, UnrecognizedFields)
    assert event.raw_line == line
    assert classifier.stats["unrecognized"] == 1


def test_structural_marker_beats_category_dictionary(classifier):
    event = _classify(classifier, '[Logout]: New player "Bob" connected')

    assert event.category == EventCategory.DISCONNECTION
    assert event.rule == "logout_start"
    assert event.fields.phase == "logout_start"
    assert classifier.stats["connection"] == 0
    assert sum(classifier.stats.values()) == 1


def test_logout_finished_and_cancelled(classifier):
    finished = _classify(classifier, '[Logout]: Player "Bob" finished logout')
    cancelled = _classify(classifier, '[Logout]: Player "Bob" cancelled logout')

    assert finished.fields.phase == "logout_complete"
    assert cancelled.fields.phase == "logout_cancel"
    assert finished.fields.player == "Bob"


def test_invoke_markers_and_respawn(classifier):
    connect = _classify(classifier, 'Player "Ann" (id=A1) InvokeOnConnect')
    disconnect = _classify(classifier, 'Player "Ann" (id=A1) InvokeOnDisconnect')
    respawn = _classify(classifier, 'ClientRespawnEvent for Player "Ann"')

    assert connect.category == EventCategory.CONNECTION
    assert connect.fields.phase == "connect_init"
    assert disconnect.fields.phase == "disconnect_init"
    assert respawn.fields.phase == "respawn"


def test_dayz_connection_line(classifier):
    event = _classify(classifier, '12:00:01 | Player "Survivor" (id=ABC= pos=<1.0, 2.0, 3.0>) is connected')

    assert event.category == EventCategory.CONNECTION
    assert isinstance(event.fields, ConnectionFields)
    assert event.fields.player == "Survivor"
    assert event.fields.player_id == "ABC="
    assert event.fields.position == Position(1.0, 2.0, 3.0)


def test_disconnected_is_not_a_connection(classifier):
    event = _classify(classifier, '12:10:00 | Player "Survivor"(id=ABC=) has been disconnected')

    assert event.category == EventCategory.DISCONNECTION
    assert event.fields.player == "Survivor"


def test_dayz_kill_line_fields(classifier):
    line = ('12:05:00 | Player "Victim" (DEAD) (id=V1 pos=<100.0, 200.0, 5.0>) killed by '
            'Player "Killer" (id=K1 pos=<110.0, 210.0, 5.0>) with M4-A1 from 125.3 meters')

    event = _classify(classifier, line)

    assert event.category == EventCategory.KILL
    kill = event.fields
    assert isinstance(kill, KillFields)
    assert kill.killer == "Killer"
    assert kill.victim == "Victim"
    assert kill.weapon == "M4-A1"
    assert kill.distance == pytest.approx(125.3)
    assert kill.position == Position(100.0, 200.0, 5.0)


def test_generic_kill_line_fields(classifier):
    event = _classify(classifier, "Bob killed Alice by Mosin distance: 350 m hit head")

    kill = event.fields
    assert kill.killer == "Bob"
    assert kill.victim == "Alice"
    assert kill.weapon == "Mosin"
    assert kill.distance == 350.0
    assert kill.hit_zone == "head"


def test_quoted_kill_format(classifier):
    event = _classify(classifier, '[12:00:00] "Hunter" kills "Prey" with "SVD" at x,y,z')

    assert event.category == EventCategory.KILL
    assert (event.fields.killer, event.fields.victim, event.fields.weapon) == ("Hunter", "Prey", "SVD")


def test_kill_without_details_is_still_a_kill(classifier):
    event = _classify(classifier, "someone was killed")

    assert event.category == EventCategory.KILL
    assert event.fields.weapon is None
    assert event.fields.distance is None


def test_suicide_is_a_death(classifier):
    event = _classify(classifier, 'Player "Sad" (id=S1) committed suicide')

    assert event.category == EventCategory.DEATH
    assert event.fields.player == "Sad"
    assert event.fields.cause == "suicide"


def test_artillery_coordinates(classifier):
    event = _classify(classifier, "Artillery barrage at [1234.5, 6789.0, 10.0]")

    assert event.category == EventCategory.DYNAMIC_EVENT
    assert event.fields.event_name == "artillery"
    assert event.fields.position == Position(1234.5, 6789.0, 10.0)


def test_base_building_and_raid_priority(classifier):
    built = _classify(classifier, 'Player "Bob" (id=B1) placed Fence Kit')
    wall = _classify(classifier, 'Player "Bob" destroyed wall with Plastic Explosive')

    assert built.category == EventCategory.BASE_BUILDING
    assert built.fields.action == "placed"
    assert built.fields.item == "Fence Kit"
    # "destroyed" is a building pattern and building is checked before raid
    assert wall.category == EventCategory.BASE_BUILDING


def test_raid_line(classifier):
    event = _classify(classifier, 'Player "Bob" blew up Gate (id=B1)')

    assert event.category == EventCategory.RAID
    assert event.fields.target == "Gate"


def test_admin_action(classifier):
    event = _classify(classifier, 'Admin "Mod" kicked "Griefer" for spam')

    assert event.category == EventCategory.ADMIN_ACTION
    assert event.fields.admin == "Mod"
    assert event.fields.action == "kicked"
    assert event.fields.target == "Griefer"


def test_restart_marker_flags_restart(classifier):
    event = _classify(classifier, "AdminLog started on 2024-06-01 at 10:00:00")

    assert event.category == EventCategory.BROADCAST
    assert isinstance(event.fields, BroadcastFields)
    assert event.fields.is_restart


def test_restart_warning_is_plain_broadcast(classifier):
    event = _classify(classifier, "Broadcast: server will restart in 10 minutes")

    assert event.category == EventCategory.BROADCAST
    assert not event.fields.is_restart


def test_embedded_timestamp_is_exact(classifier):
    event = _classify(classifier, '2024-05-30 08:15:00 Player "X" is connected')

    assert event.timestamp == datetime(2024, 5, 30, 8, 15, 0, tzinfo=timezone.utc)
    assert not event.approximate_timestamp


def test_missing_timestamp_falls_back_to_clock(classifier):
    event = _classify(classifier, '12:00:01 | Player "X" is connected')

    assert event.timestamp == START
    assert event.approximate_timestamp


def test_bracketed_timestamp_format():
    assert extract_timestamp("[2024.06.01-10.20.30:123] LogSFPS: hello") == datetime(
        2024, 6, 1, 10, 20, 30, tzinfo=timezone.utc)


def test_classify_lines_keeps_file_order(classifier):
    text = '\n'.join([
        'Player "A" is connected',
        '',
        'Player "B" is connected',
        'Player "A" has been disconnected',
    ])

    events = classifier.classify_lines(text, "42", "x.ADM", START)

    assert [e.fields.player for e in events] == ["A", "B", "A"]
    assert all(e.source_file == "x.ADM" and e.service_id == "42" for e in events)


def test_event_rejects_mismatched_fields():
    with pytest.raises(TypeError):
        LogEvent("1", START, EventCategory.KILL, ConnectionFields(), "raw")


def test_unquoted_kill_format_with_location(classifier):
    event = _classify(classifier, "[12:00:00] Alpha kills Bravo with AKM at 1000.5,2000.1,10.0")

    assert event.category == EventCategory.KILL
    kill = event.fields
    assert (kill.killer, kill.victim, kill.weapon) == ("Alpha", "Bravo", "AKM")
    assert kill.position == Position(1000.5, 2000.1, 10.0)


def test_quoted_kill_keeps_trailing_location(classifier):
    event = _classify(classifier, '[12:00:00] "Hunter" kills "Prey" with "SVD" at 10.0,20.5,3.0')

    assert event.fields.weapon == "SVD"
    assert event.fields.position == Position(10.0, 20.5, 3.0)
