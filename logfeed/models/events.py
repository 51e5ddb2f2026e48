"""
Logfeed - Event Models
Typed log events produced by the classifier and consumed by the session
tracker and notification router
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union


class EventCategory(str, Enum):
    CONNECTION = "connection"
    DISCONNECTION = "disconnection"
    KILL = "kill"
    DEATH = "death"
    BASE_BUILDING = "base_building"
    RAID = "raid"
    DYNAMIC_EVENT = "dynamic_event"
    ECONOMY = "economy"
    VEHICLE = "vehicle"
    ADMIN_ACTION = "admin_action"
    BROADCAST = "broadcast"
    CONNECTION_ISSUE = "connection_issue"
    PLAYER_POSITION = "player_position"
    MISC = "misc"
    UNRECOGNIZED = "unrecognized"


class FileKind(str, Enum):
    SERVER_REPORT = "server_report"
    ADMIN_LOG = "admin_log"
    GENERIC = "generic"


@dataclass(frozen=True)
class Position:
    x: float
    y: float
    z: float

    def __str__(self) -> str:
        return f"{self.x:.1f}, {self.y:.1f}, {self.z:.1f}"


# Per-category payloads. Every field is optional: extraction is best effort.

@dataclass(frozen=True)
class ConnectionFields:
    player: Optional[str] = None
    player_id: Optional[str] = None
    phase: str = "connected"  # connected, connect_init, respawn
    position: Optional[Position] = None


@dataclass(frozen=True)
class DisconnectionFields:
    player: Optional[str] = None
    player_id: Optional[str] = None
    # disconnected, disconnect_init, logout_start, logout_complete, logout_cancel
    phase: str = "disconnected"


@dataclass(frozen=True)
class KillFields:
    killer: Optional[str] = None
    victim: Optional[str] = None
    weapon: Optional[str] = None
    distance: Optional[float] = None
    hit_zone: Optional[str] = None
    position: Optional[Position] = None

    @property
    def is_suicide(self) -> bool:
        return bool(self.killer) and self.killer == self.victim


@dataclass(frozen=True)
class DeathFields:
    player: Optional[str] = None
    cause: Optional[str] = None
    position: Optional[Position] = None


@dataclass(frozen=True)
class BuildingFields:
    player: Optional[str] = None
    action: Optional[str] = None
    item: Optional[str] = None
    position: Optional[Position] = None


@dataclass(frozen=True)
class RaidFields:
    player: Optional[str] = None
    target: Optional[str] = None
    position: Optional[Position] = None


@dataclass(frozen=True)
class DynamicEventFields:
    event_name: Optional[str] = None
    action: Optional[str] = None
    position: Optional[Position] = None


@dataclass(frozen=True)
class EconomyFields:
    item: Optional[str] = None
    action: Optional[str] = None


@dataclass(frozen=True)
class VehicleFields:
    player: Optional[str] = None
    vehicle: Optional[str] = None
    action: Optional[str] = None


@dataclass(frozen=True)
class AdminActionFields:
    admin: Optional[str] = None
    action: Optional[str] = None
    target: Optional[str] = None


@dataclass(frozen=True)
class BroadcastFields:
    message: Optional[str] = None
    is_restart: bool = False


@dataclass(frozen=True)
class ConnectionIssueFields:
    player: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class PlayerPositionFields:
    player: Optional[str] = None
    position: Optional[Position] = None


@dataclass(frozen=True)
class MiscFields:
    topic: Optional[str] = None
    state: Optional[str] = None


@dataclass(frozen=True)
class UnrecognizedFields:
    pass


EventFields = Union[
    ConnectionFields,
    DisconnectionFields,
    KillFields,
    DeathFields,
    BuildingFields,
    RaidFields,
    DynamicEventFields,
    EconomyFields,
    VehicleFields,
    AdminActionFields,
    BroadcastFields,
    ConnectionIssueFields,
    PlayerPositionFields,
    MiscFields,
    UnrecognizedFields,
]

FIELDS_BY_CATEGORY = {
    EventCategory.CONNECTION: ConnectionFields,
    EventCategory.DISCONNECTION: DisconnectionFields,
    EventCategory.KILL: KillFields,
    EventCategory.DEATH: DeathFields,
    EventCategory.BASE_BUILDING: BuildingFields,
    EventCategory.RAID: RaidFields,
    EventCategory.DYNAMIC_EVENT: DynamicEventFields,
    EventCategory.ECONOMY: EconomyFields,
    EventCategory.VEHICLE: VehicleFields,
    EventCategory.ADMIN_ACTION: AdminActionFields,
    EventCategory.BROADCAST: BroadcastFields,
    EventCategory.CONNECTION_ISSUE: ConnectionIssueFields,
    EventCategory.PLAYER_POSITION: PlayerPositionFields,
    EventCategory.MISC: MiscFields,
    EventCategory.UNRECOGNIZED: UnrecognizedFields,
}


@dataclass(frozen=True)
class LogEvent:
    """
    One classified log line.

    ``timestamp`` comes from the line when it embeds a full date and time.
    Otherwise it is the wall-clock time at classification and
    ``approximate_timestamp`` is set, so ordering such events by timestamp
    across files is not reliable.
    """

    service_id: str
    timestamp: datetime
    category: EventCategory
    fields: EventFields
    raw_line: str
    source_file: Optional[str] = None
    approximate_timestamp: bool = False
    rule: Optional[str] = None

    def __post_init__(self):
        expected = FIELDS_BY_CATEGORY[self.category]
        if not isinstance(self.fields, expected):
            raise TypeError(
                f"{self.category.value} events carry {expected.__name__}, "
                f"got {type(self.fields).__name__}"
            )


@dataclass(frozen=True)
class FileMeta:
    """A directory entry reported by a file source."""

    name: str
    path: str
    size: int
    modified_at: Optional[datetime] = None
    is_file: bool = True


@dataclass
class TrackedFile:
    service_id: str
    path: str
    file_kind: FileKind
    last_known_size: int = 0
    last_read_at: Optional[datetime] = None
    reads: int = field(default=0, compare=False)
