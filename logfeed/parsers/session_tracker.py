"""
Logfeed - Session Tracker
Per-service player presence, kill log and activity counters.

``apply`` only describes what an event changes; ``commit`` performs the
change. The monitor calls both, and hands the same effects to the database
so persistence and in-memory state never diverge.
"""

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Deque, Dict, List, Optional, Tuple, Union

from logfeed.models.events import (
    BroadcastFields, ConnectionFields, DeathFields, DisconnectionFields,
    EventCategory, KillFields, LogEvent,
)

logger = logging.getLogger(__name__)

KILL_LOG_SIZE = 200
BUCKET_RETENTION = timedelta(days=7)

OPENING_PHASES = ('connected', 'connect_init')
CLOSING_PHASES = ('disconnected', 'disconnect_init', 'logout_complete')

SUMMARY_CATEGORIES = {
    EventCategory.KILL: 'kills',
    EventCategory.DEATH: 'deaths',
    EventCategory.CONNECTION: 'connections',
    EventCategory.DISCONNECTION: 'disconnections',
    EventCategory.ECONOMY: 'economy_events',
    EventCategory.BASE_BUILDING: 'building_events',
}


class SessionState(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


@dataclass
class PlayerSession:
    player: str
    state: SessionState
    connected_at: datetime
    last_seen_at: datetime


@dataclass(frozen=True)
class KillRecord:
    killer: Optional[str]
    victim: Optional[str]
    weapon: Optional[str]
    distance: Optional[float]
    location: Optional[str]
    at: datetime
    suicide: bool = False


@dataclass(frozen=True)
class OnlinePlayer:
    name: str
    session_duration: timedelta


@dataclass(frozen=True)
class ActivitySummary:
    kills: int = 0
    deaths: int = 0
    connections: int = 0
    disconnections: int = 0
    economy_events: int = 0
    building_events: int = 0


# Effects

@dataclass(frozen=True)
class SessionOpened:
    player: str
    at: datetime


@dataclass(frozen=True)
class SessionRefreshed:
    player: str
    at: datetime


@dataclass(frozen=True)
class SessionClosed:
    player: str
    at: datetime


@dataclass(frozen=True)
class AllSessionsClosed:
    players: Tuple[str, ...]
    at: datetime


@dataclass(frozen=True)
class KillRecorded:
    kill: KillRecord


@dataclass(frozen=True)
class DeathRecorded:
    player: str
    cause: Optional[str]
    at: datetime


@dataclass(frozen=True)
class ActivityCounted:
    counter: str
    at: datetime


DerivedEffect = Union[
    SessionOpened, SessionRefreshed, SessionClosed, AllSessionsClosed,
    KillRecorded, DeathRecorded, ActivityCounted,
]


@dataclass
class ServiceSessions:
    """Everything the tracker knows about one service"""

    service_id: str
    sessions: Dict[str, PlayerSession] = field(default_factory=dict)
    kill_log: Deque[KillRecord] = field(default_factory=lambda: deque(maxlen=KILL_LOG_SIZE))
    kills_by_player: Counter = field(default_factory=Counter)
    deaths_by_player: Counter = field(default_factory=Counter)
    totals: Counter = field(default_factory=Counter)
    buckets: Dict[datetime, Counter] = field(default_factory=dict)


def _minute(at: datetime) -> datetime:
    return at.replace(second=0, microsecond=0)


class SessionTracker:
    """
    Reduces classified events for one service.

    Mutated only by the owning monitor's tick. Readers get copies, so a
    query running between two ticks sees a consistent snapshot.
    """

    def __init__(self, service_id: str, clock=None):
        self.state = ServiceSessions(service_id)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def service_id(self) -> str:
        return self.state.service_id

    def apply(self, event: LogEvent, now: Optional[datetime] = None) -> List[DerivedEffect]:
        """Effects ``event`` has on this service; nothing is mutated"""
        now = now or self._clock()
        effects: List[DerivedEffect] = []
        fields = event.fields
        sessions = self.state.sessions

        if isinstance(fields, ConnectionFields) and fields.player:
            session = sessions.get(fields.player)
            online = session is not None and session.state == SessionState.ONLINE
            if fields.phase == 'respawn' or (online and fields.phase in OPENING_PHASES):
                effects.append(SessionRefreshed(fields.player, now))
            else:
                effects.append(SessionOpened(fields.player, now))

        elif isinstance(fields, DisconnectionFields) and fields.player:
            if fields.phase in CLOSING_PHASES:
                session = sessions.get(fields.player)
                if session is None or session.state == SessionState.ONLINE:
                    effects.append(SessionClosed(fields.player, now))

        elif isinstance(fields, BroadcastFields) and fields.is_restart:
            online = tuple(name for name, s in sessions.items() if s.state == SessionState.ONLINE)
            effects.append(AllSessionsClosed(online, now))

        elif isinstance(fields, KillFields):
            effects.append(KillRecorded(KillRecord(
                killer=fields.killer,
                victim=fields.victim,
                weapon=fields.weapon,
                distance=fields.distance,
                location=str(fields.position) if fields.position else None,
                at=event.timestamp,
                suicide=fields.is_suicide,
            )))

        elif isinstance(fields, DeathFields) and fields.player:
            if self._kill_already_recorded(fields.player, event.timestamp):
                # "(DEAD) ... hit by" and "died." lines trail the kill line
                return effects
            effects.append(DeathRecorded(fields.player, fields.cause, event.timestamp))

        counter = SUMMARY_CATEGORIES.get(event.category)
        if counter and self._counts_toward_summary(event):
            effects.append(ActivityCounted(counter, now))

        return effects

    def _kill_already_recorded(self, victim: str, at: datetime) -> bool:
        for kill in reversed(self.state.kill_log):
            if kill.at < at:
                return False
            if kill.at == at and kill.victim == victim:
                return True
        return False

    @staticmethod
    def _counts_toward_summary(event: LogEvent) -> bool:
        fields = event.fields
        if isinstance(fields, ConnectionFields):
            return fields.phase != 'respawn'
        if isinstance(fields, DisconnectionFields):
            return fields.phase in CLOSING_PHASES
        return True

    def commit(self, effects: List[DerivedEffect]):
        state = self.state
        for effect in effects:
            if isinstance(effect, SessionOpened):
                session = state.sessions.get(effect.player)
                if session is None:
                    state.sessions[effect.player] = PlayerSession(
                        effect.player, SessionState.ONLINE, effect.at, effect.at)
                else:
                    session.state = SessionState.ONLINE
                    session.connected_at = effect.at
                    session.last_seen_at = effect.at

            elif isinstance(effect, SessionRefreshed):
                session = state.sessions.get(effect.player)
                if session is None:
                    state.sessions[effect.player] = PlayerSession(
                        effect.player, SessionState.ONLINE, effect.at, effect.at)
                else:
                    if session.state != SessionState.ONLINE:
                        session.connected_at = effect.at
                    session.state = SessionState.ONLINE
                    session.last_seen_at = effect.at

            elif isinstance(effect, SessionClosed):
                session = state.sessions.get(effect.player)
                if session is None:
                    state.sessions[effect.player] = PlayerSession(
                        effect.player, SessionState.OFFLINE, effect.at, effect.at)
                else:
                    session.state = SessionState.OFFLINE
                    session.last_seen_at = effect.at

            elif isinstance(effect, AllSessionsClosed):
                for name in effect.players:
                    session = state.sessions.get(name)
                    if session:
                        session.state = SessionState.OFFLINE
                        session.last_seen_at = effect.at
                logger.info(f"🔁 Restart on service {state.service_id}: closed {len(effect.players)} sessions")

            elif isinstance(effect, KillRecorded):
                kill = effect.kill
                state.kill_log.append(kill)
                if kill.victim:
                    state.deaths_by_player[kill.victim] += 1
                if kill.killer and not kill.suicide:
                    state.kills_by_player[kill.killer] += 1

            elif isinstance(effect, DeathRecorded):
                state.deaths_by_player[effect.player] += 1

            elif isinstance(effect, ActivityCounted):
                bucket = state.buckets.setdefault(_minute(effect.at), Counter())
                bucket[effect.counter] += 1
                state.totals[effect.counter] += 1

        self._prune_buckets()

    def _prune_buckets(self):
        if not self.state.buckets:
            return
        cutoff = _minute(self._clock() - BUCKET_RETENTION)
        for key in [k for k in self.state.buckets if k < cutoff]:
            del self.state.buckets[key]

    def process(self, event: LogEvent) -> List[DerivedEffect]:
        effects = self.apply(event)
        self.commit(effects)
        return effects

    # Queries

    def summary(self, window: timedelta, now: Optional[datetime] = None) -> ActivitySummary:
        now = now or self._clock()
        start = _minute(now - window)
        counts: Counter = Counter()
        for minute, bucket in list(self.state.buckets.items()):
            if start <= minute <= now:
                counts.update(bucket)
        return ActivitySummary(**{name: counts.get(name, 0) for name in SUMMARY_CATEGORIES.values()})

    def current_players(self, now: Optional[datetime] = None) -> List[OnlinePlayer]:
        now = now or self._clock()
        players = [
            OnlinePlayer(s.player, max(now - s.connected_at, timedelta(0)))
            for s in list(self.state.sessions.values())
            if s.state == SessionState.ONLINE
        ]
        return sorted(players, key=lambda p: p.session_duration, reverse=True)

    def recent_kills(self, limit: int = 10) -> List[KillRecord]:
        return list(self.state.kill_log)[-limit:][::-1]

    def player_tally(self, player: str) -> Tuple[int, int]:
        return self.state.kills_by_player[player], self.state.deaths_by_player[player]

    def session(self, player: str) -> Optional[PlayerSession]:
        return self.state.sessions.get(player)

    def prune_offline(self, older_than: timedelta, now: Optional[datetime] = None) -> int:
        """Drop offline sessions not seen within ``older_than``"""
        cutoff = (now or self._clock()) - older_than
        stale = [name for name, s in self.state.sessions.items()
                 if s.state == SessionState.OFFLINE and s.last_seen_at < cutoff]
        for name in stale:
            del self.state.sessions[name]
        return len(stale)
