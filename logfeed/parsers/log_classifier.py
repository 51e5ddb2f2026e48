"""
Logfeed - Line Classifier
Maps raw DayZ admin/report log lines to typed events.

Rules are evaluated top to bottom and the first match wins, so a line is
never counted under two categories. High-specificity structural markers go
first, then the category dictionary in fixed priority order. Lines nothing
matches become ``unrecognized`` events.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from logfeed.models.events import (
    AdminActionFields, BroadcastFields, BuildingFields, ConnectionFields,
    ConnectionIssueFields, DeathFields, DisconnectionFields, DynamicEventFields,
    EconomyFields, EventCategory, EventFields, FIELDS_BY_CATEGORY, KillFields, LogEvent, MiscFields,
    PlayerPositionFields, Position, RaidFields, UnrecognizedFields, VehicleFields,
)

logger = logging.getLogger(__name__)

_NUM = r'(-?\d+(?:\.\d+)?)'

TIMESTAMP_PATTERNS = [
    (re.compile(r'(\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}:\d{2})'), ('%Y-%m-%d %H:%M:%S', '%Y-%m-%dT%H:%M:%S')),
    (re.compile(r'\[(\d{4}\.\d{2}\.\d{2}-\d{2}\.\d{2}\.\d{2})(?::\d{3})?\]'), ('%Y.%m.%d-%H.%M.%S',)),
]

PLAYER_QUOTED = re.compile(r'\bPlayer\s*"([^"]+)"', re.IGNORECASE)
ANY_QUOTED = re.compile(r'"([^"]+)"')
PLAYER_BARE = re.compile(r'\bPlayer[:\s]+([A-Za-z0-9_\-\.]+)', re.IGNORECASE)
PLAYER_ID = re.compile(r'\(id=([^\s)]+)')

POSITION_PATTERNS = [
    re.compile(rf'pos=<\s*{_NUM},\s*{_NUM},\s*{_NUM}\s*>', re.IGNORECASE),
    re.compile(rf'\bposition:\s*\(\s*{_NUM},\s*{_NUM},\s*{_NUM}\s*\)', re.IGNORECASE),
    re.compile(rf'\bcoords?\s*[:=]\s*\(\s*{_NUM},\s*{_NUM},\s*{_NUM}\s*\)', re.IGNORECASE),
    re.compile(rf'\[\s*{_NUM},\s*{_NUM},\s*{_NUM}\s*\]'),
    re.compile(rf'\bat\s+{_NUM},\s*{_NUM},\s*{_NUM}\b'),
]

HIT_ZONES = r'(head|brain|neck|torso|chest|spine|pelvis|leftarm|rightarm|arm|hand|leftleg|rightleg|leg|foot)'


# Field helpers

def extract_position(line: str) -> Optional[Position]:
    for pattern in POSITION_PATTERNS:
        match = pattern.search(line)
        if match:
            x, y, z = (float(value) for value in match.groups())
            return Position(x, y, z)
    return None


def extract_player(line: str) -> Optional[str]:
    match = PLAYER_QUOTED.search(line) or ANY_QUOTED.search(line) or PLAYER_BARE.search(line)
    return match.group(1).strip() if match else None


def extract_player_id(line: str) -> Optional[str]:
    match = PLAYER_ID.search(line)
    return match.group(1) if match else None


def _search(pattern: str, line: str, group: int = 1) -> Optional[str]:
    match = re.search(pattern, line, re.IGNORECASE)
    return match.group(group).strip() if match else None


def _distance(line: str) -> Optional[float]:
    value = _search(rf'\bdistance[:=]?\s*{_NUM}\s*m', line) or _search(rf'\bfrom\s+{_NUM}\s*m(?:eters)?\b', line)
    return float(value) if value else None


def _hit_zone(line: str) -> Optional[str]:
    zone = _search(rf'\bhit\s+(?:in\s+(?:the\s+)?)?{HIT_ZONES}\b', line) or _search(rf'\binto\s+{HIT_ZONES}\s*\(', line)
    return zone.lower() if zone else None


KILL_FORMS = [
    re.compile(r'"(.+?)" kills "(.+?)" with "(.+?)"', re.IGNORECASE),
    re.compile(r'Kill:\s*"(.+?)" killed "(.+?)" with "(.+?)"', re.IGNORECASE),
    re.compile(rf'\b(\w+) kills (\w+) with (.+?)(?=\s+at\s+{_NUM},|\s*$)', re.IGNORECASE),
]


def extract_kill(line: str) -> KillFields:
    for form in KILL_FORMS:
        match = form.search(line)
        if match:
            return KillFields(
                killer=match.group(1),
                victim=match.group(2),
                weapon=match.group(3),
                distance=_distance(line),
                hit_zone=_hit_zone(line),
                position=extract_position(line),
            )

    killer = _search(r'killed by Player\s*"([^"]+)"', line)
    victim = _search(r'\bPlayer\s*"([^"]+)"', line)
    weapon = _search(r'\bwith\s+"?([^"(]+?)"?\s*(?:\bfrom\b|\(|$)', line)

    if killer is None:
        match = re.search(r'\b(\w+)\s+(?:killed|shot)\s+(\w+)\b', line, re.IGNORECASE)
        if match and match.group(2).lower() not in ('by', 'with'):
            killer, victim = match.group(1), match.group(2)
        elif victim is None:
            victim = _search(r'\b(\w+)\s+(?:was|has been)\s+(?:killed|murdered|shot)\b', line)
        if weapon is None:
            weapon = _search(r'\bby\s+(?!Player\b)(\w+)', line)

    return KillFields(
        killer=killer,
        victim=victim,
        weapon=weapon,
        distance=_distance(line),
        hit_zone=_hit_zone(line),
        position=extract_position(line),
    )


def extract_death(line: str) -> DeathFields:
    if re.search(r'\bsuicide\b', line, re.IGNORECASE):
        cause = 'suicide'
    else:
        cause = _search(r'\bdied from\s+([\w ]+?)(?:[.(]|$)', line) or _search(r'\b(bled out|starved|dehydrated|drowned|fell)\b', line)
    return DeathFields(
        player=extract_player(line) or _search(r'^(?:[\d:]+\s*\|\s*)?(\w+)\s+(?:died|perished)\b', line),
        cause=cause,
        position=extract_position(line),
    )


def extract_building(line: str) -> BuildingFields:
    verbs = r'(constructed|placed|built|dismantled|destroyed|attached|repaired|folded|unfolded)'
    return BuildingFields(
        player=extract_player(line),
        action=(_search(rf'\b{verbs}\b', line) or '').lower() or None,
        item=_search(rf'\b{verbs}\s+(?:an?\s+)?(.+?)(?:\s+(?:on|to|with|at)\b|\s*\(|\s*$)', line, group=2),
        position=extract_position(line),
    )


def extract_raid(line: str) -> RaidFields:
    return RaidFields(
        player=extract_player(line),
        target=_search(r'\b(?:destroyed|blew up|breached)\s+(.+?)(?:\s+(?:with|at|using)\b|\s*\(|\s*$)', line),
        position=extract_position(line),
    )


def extract_dynamic_event(line: str) -> DynamicEventFields:
    name = _search(r'\bStatic(\w+)', line) or ('Central Economy' if re.search(r'\bCentral Economy\b', line, re.IGNORECASE) else None)
    return DynamicEventFields(
        event_name=name,
        action=(_search(r'\b(spawn\w*|cleanup|creat\w*|despawn\w*)\b', line) or '').lower() or None,
        position=extract_position(line),
    )


def extract_economy(line: str) -> EconomyFields:
    return EconomyFields(
        item=_search(r'"([^"]+)"', line) or _search(r'\b(\w+)\s+(?:was\s+)?(?:re|de)?spawned\b', line),
        action=(_search(r'\b(respawned|despawned|spawned|cleanup)\b', line) or '').lower() or None,
    )


def extract_vehicle(line: str) -> VehicleFields:
    return VehicleFields(
        player=_search(r'\bPlayer\s*"([^"]+)"', line),
        vehicle=_search(r'\b(?:vehicle|car)\s+"?([\w\-]+)"?', line) or _search(r'\b(\w*offroad\w*)\b', line),
        action=(_search(r'\b(spawned|created|deleted|destroyed|cleanup|exploded)\b', line) or '').lower() or None,
    )


def extract_admin_action(line: str) -> AdminActionFields:
    match = re.search(r'Admin "([^"]+)" (kicked|banned|teleported|spawned)\s*(.*)', line, re.IGNORECASE)
    if match:
        rest = match.group(3)
        target = _search(r'"([^"]+)"', rest) or (rest.split()[0] if rest.split() else None)
        return AdminActionFields(admin=match.group(1), action=match.group(2).lower(), target=target)
    return AdminActionFields(
        admin=_search(r'\badmin\s+"?([\w\-]+)"?', line),
        action=(_search(r'\b(command|restart|ban|kick)\b', line) or '').lower() or None,
        target=_search(r'\b(?:ban|kick)(?:ned|ed)?\s+"?([\w\-]+)"?', line),
    )


def extract_broadcast(line: str) -> BroadcastFields:
    message = _search(r'\bBroadcast\w*\s*[:\-]?\s*(.+)$', line) or line.strip()
    return BroadcastFields(message=message, is_restart=False)


def extract_connection_issue(line: str) -> ConnectionIssueFields:
    return ConnectionIssueFields(
        player=extract_player(line),
        reason=(_search(r'\b(ping timeout|timeout|connection lost|dropped)\b', line) or '').lower() or None,
    )


def extract_connection(line: str, phase: str = 'connected') -> ConnectionFields:
    return ConnectionFields(
        player=extract_player(line),
        player_id=extract_player_id(line),
        phase=phase,
        position=extract_position(line),
    )


def extract_disconnection(line: str, phase: str = 'disconnected') -> DisconnectionFields:
    return DisconnectionFields(
        player=extract_player(line),
        player_id=extract_player_id(line),
        phase=phase,
    )


def extract_player_position(line: str) -> PlayerPositionFields:
    return PlayerPositionFields(player=extract_player(line), position=extract_position(line))


def extract_misc(line: str) -> MiscFields:
    return MiscFields(topic=_search(r'(LogManager|PluginMessageManager|PlayerBase|Weight|GUI|Unknown)', line))


@dataclass(frozen=True)
class ClassifierRule:
    name: str
    pattern: re.Pattern
    category: EventCategory
    extract: Callable[[str, re.Match], EventFields]


def _rule(name: str, pattern: str, category: EventCategory, extract) -> ClassifierRule:
    return ClassifierRule(name, re.compile(pattern, re.IGNORECASE), category, extract)


def _artillery(line: str, match: re.Match) -> DynamicEventFields:
    x, y, z = (float(value) for value in match.groups())
    return DynamicEventFields(event_name='artillery', action='strike', position=Position(x, y, z))


def _diagnostic(line: str, match: re.Match) -> MiscFields:
    topic = f"diag:{match.group(1)}" if match.group(1) else "diag"
    return MiscFields(topic=topic, state=match.group(2).lower())


def _restart(line: str, match: re.Match) -> BroadcastFields:
    return BroadcastFields(message=line.strip(), is_restart=True)


STRUCTURAL_RULES: List[ClassifierRule] = [
    _rule('logout_start', r'\[Logout\]:\s*New player', EventCategory.DISCONNECTION,
          lambda line, m: extract_disconnection(line, 'logout_start')),
    _rule('logout_complete', r'\[Logout\]:\s*Player .*finished', EventCategory.DISCONNECTION,
          lambda line, m: extract_disconnection(line, 'logout_complete')),
    _rule('logout_cancel', r'\[Logout\]:\s*Player .*cancell?ed', EventCategory.DISCONNECTION,
          lambda line, m: extract_disconnection(line, 'logout_cancel')),
    _rule('connect_init', r'InvokeOnConnect', EventCategory.CONNECTION,
          lambda line, m: extract_connection(line, 'connect_init')),
    _rule('disconnect_init', r'InvokeOnDisconnect', EventCategory.DISCONNECTION,
          lambda line, m: extract_disconnection(line, 'disconnect_init')),
    _rule('respawn', r'ClientRespawnEvent', EventCategory.CONNECTION,
          lambda line, m: extract_connection(line, 'respawn')),
    _rule('corpse', r'\b(?:corpse|dead body)\b', EventCategory.DEATH,
          lambda line, m: DeathFields(player=extract_player(line), cause='corpse', position=extract_position(line))),
    _rule('artillery', rf'\bartillery\b.*?\[\s*{_NUM},\s*{_NUM},\s*{_NUM}\s*\]', EventCategory.DYNAMIC_EVENT, _artillery),
    _rule('diagnostic_toggle', r'\bdiag(?:nostic)?s?\b[\s:]*(\w+)?.*?\b(enabled|disabled|on|off)\b', EventCategory.MISC, _diagnostic),
    _rule('restart_marker', r'AdminLog started on|\bserver (?:is )?(?:shutting down|restarting now)\b|\bserver shutdown\b',
          EventCategory.BROADCAST, _restart),
]

# Checked in this order after the structural rules; the first category with a
# matching pattern wins.
CATEGORY_PATTERNS: List[Tuple[EventCategory, List[str], Callable[[str], EventFields]]] = [
    (EventCategory.CONNECTION,
     [r'\bconnected\b', r'\bhas connected\b', r'\bjoined the game\b', r'\bconnected from\b'],
     extract_connection),
    (EventCategory.DISCONNECTION,
     [r'\bdisconnected\b', r'\bhas left the game\b', r'\bconnection lost\b', r'\bplayer dropped\b'],
     extract_disconnection),
    (EventCategory.KILL,
     [r'\bkilled\b', r'\bhas been killed by\b', r'\bdied from\b', r'\bshot by\b', r'\bwas murdered\b',
      r'"[^"]+" kills "[^"]+"', r'\b\w+ kills \w+ with\b'],
     extract_kill),
    (EventCategory.DEATH,
     [r'\bdied\b', r'\bdead\b', r'\bsuicide\b', r'\bperished\b'],
     extract_death),
    (EventCategory.BASE_BUILDING,
     [r'\bconstructed\b', r'\bplaced\b', r'\bbuilt\b', r'\bdismantled\b', r'\bdestroyed\b', r'\battached\b', r'\brepaired\b'],
     extract_building),
    (EventCategory.RAID,
     [r'\bdestroyed wall\b', r'\bblew up\b', r'\braid\b', r'\bbreached\b'],
     extract_raid),
    (EventCategory.DYNAMIC_EVENT,
     [r'Static(AirplaneCrate|BoatFishing|BoatMilitary|Bonfire|ChristmasTree|ContainerLocked|HeliCrash|MilitaryConvoy|PoliceSituation|Train)',
      r'\bCentral Economy\b', r'\bCE\b.*(spawn|cleanup|create)'],
     extract_dynamic_event),
    (EventCategory.ECONOMY,
     [r'\bspawned\b', r'\brespawned\b', r'\bcleanup\b', r'\bdespawned\b', r'\bCentral Economy\b'],
     extract_economy),
    (EventCategory.VEHICLE,
     [r'\bvehicle\b.*(spawned|created|deleted|destroyed|cleanup)', r'\bcar\b.*(spawned|destroyed|exploded)', r'\boffroad\b'],
     extract_vehicle),
    (EventCategory.ADMIN_ACTION,
     [r'Admin "([^"]+)" (kicked|banned|teleported|spawned)', r'\badmin\b.*(command|restart|ban|kick)'],
     extract_admin_action),
    (EventCategory.BROADCAST,
     [r'Broadcast', r'\bserver restart\b', r'\bserver will restart\b', r'\brestart in\b', r'\bmaintenance\b'],
     extract_broadcast),
    (EventCategory.CONNECTION_ISSUE,
     [r'\btimeout\b', r'\bdropped\b', r'\bconnection lost\b', r'\bping timeout\b'],
     extract_connection_issue),
    # Protector cases are storage placements
    (EventCategory.BASE_BUILDING,
     [r'SmallProtectorCase', r'protector_case'],
     extract_building),
    (EventCategory.PLAYER_POSITION,
     [r'\bposition:\s*\(', r'\bcoords?\s*[:=]\s*\('],
     extract_player_position),
    (EventCategory.MISC,
     [r'LogManager', r'PluginMessageManager', r'PlayerBase', r'Weight', r'GUI', r'Unknown'],
     extract_misc),
]


def _category_rules() -> List[ClassifierRule]:
    rules = []
    for category, patterns, extractor in CATEGORY_PATTERNS:
        for index, pattern in enumerate(patterns):
            rules.append(_rule(f"{category.value}:{index}", pattern, category,
                               lambda line, m, extractor=extractor: extractor(line)))
    return rules


def extract_timestamp(line: str) -> Optional[datetime]:
    """Embedded date and time, or None when the line only carries a clock time"""
    for pattern, formats in TIMESTAMP_PATTERNS:
        match = pattern.search(line)
        if not match:
            continue
        value = match.group(1)
        for fmt in formats:
            try:
                return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
            except ValueError:
                continue
    return None


class LineClassifier:
    """Ordered rule list shared by every monitor; holds only audit counters"""

    def __init__(self, rules: Optional[List[ClassifierRule]] = None):
        self.rules = rules if rules is not None else STRUCTURAL_RULES + _category_rules()
        self.stats: Counter = Counter()

    def classify(self, raw_line: str, service_id: str = "", source_file: Optional[str] = None,
                 now: Optional[datetime] = None) -> Optional[LogEvent]:
        line = raw_line.rstrip('\r\n')
        if not line.strip():
            return None

        timestamp = extract_timestamp(line)
        approximate = timestamp is None
        if approximate:
            timestamp = now or datetime.now(timezone.utc)

        for rule in self.rules:
            match = rule.pattern.search(line)
            if not match:
                continue
            try:
                fields = rule.extract(line, match)
            except (ValueError, IndexError) as e:
                # The line still belongs to this category, just without details
                logger.debug(f"Field extraction failed for rule {rule.name}: {e}")
                fields = _empty_fields(rule.category)
            self.stats[rule.category.value] += 1
            return LogEvent(
                service_id=service_id,
                timestamp=timestamp,
                category=rule.category,
                fields=fields,
                raw_line=line,
                source_file=source_file,
                approximate_timestamp=approximate,
                rule=rule.name,
            )

        self.stats[EventCategory.UNRECOGNIZED.value] += 1
        logger.debug(f"Unrecognized line from {source_file}: {line[:120]}")
        return LogEvent(
            service_id=service_id,
            timestamp=timestamp,
            category=EventCategory.UNRECOGNIZED,
            fields=UnrecognizedFields(),
            raw_line=line,
            source_file=source_file,
            approximate_timestamp=approximate,
        )

    def classify_lines(self, text: str, service_id: str = "", source_file: Optional[str] = None,
                       now: Optional[datetime] = None) -> List[LogEvent]:
        """Classify a block of text in line order, skipping blank lines"""
        now = now or datetime.now(timezone.utc)
        events = []
        for line in text.splitlines():
            event = self.classify(line, service_id, source_file, now)
            if event:
                events.append(event)
        return events


def _empty_fields(category: EventCategory) -> EventFields:
    return FIELDS_BY_CATEGORY[category]()
