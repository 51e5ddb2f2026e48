"""
Logfeed - Notification Router
Sends classified events to their feed channels. Alert-worthy feeds are
throttled per (channel, category); delivery is best effort with a single
attempt.
"""

import inspect
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from logfeed.models.events import EventCategory, LogEvent
from logfeed.utils.feed_map import SEVERITY_RANK, FeedMap, FeedTemplate

logger = logging.getLogger(__name__)


class DispatchError(Exception):
    """A notification could not be delivered"""


class DispatchStatus(str, Enum):
    DELIVERED = "delivered"
    SUPPRESSED = "suppressed"
    FAILED = "failed"
    DROPPED = "dropped"


@dataclass(frozen=True)
class DispatchResult:
    destination: Optional[int]
    category: EventCategory
    status: DispatchStatus
    error: Optional[str] = None


class CooldownBook:
    """next_allowed_at per (destination, category)"""

    def __init__(self):
        self._next_allowed: Dict[Tuple[int, EventCategory], datetime] = {}

    def is_open(self, destination: int, category: EventCategory, now: datetime) -> bool:
        next_allowed = self._next_allowed.get((destination, category))
        return next_allowed is None or now >= next_allowed

    def start(self, destination: int, category: EventCategory, now: datetime, seconds: float):
        self._next_allowed[(destination, category)] = now + timedelta(seconds=seconds)

    def next_allowed_at(self, destination: int, category: EventCategory) -> Optional[datetime]:
        return self._next_allowed.get((destination, category))

    def clear(self):
        self._next_allowed.clear()


class NotificationRouter:
    """
    Routes one event at a time.

    ``sink`` needs an ``async send(destination, event, template)`` that raises
    on failure. ``feed_map_loader`` is called for every routing decision and
    may return a FeedMap or an awaitable of one.
    """

    def __init__(self, sink, feed_map_loader: Callable, min_severity: str = 'info',
                 clock: Optional[Callable[[], datetime]] = None):
        if min_severity not in SEVERITY_RANK:
            raise ValueError(f"Unknown severity {min_severity!r}")
        self.sink = sink
        self.feed_map_loader = feed_map_loader
        self.min_severity = min_severity
        self.cooldowns = CooldownBook()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.delivered = 0
        self.failed = 0
        self.suppressed = 0

    async def _feed_map(self) -> FeedMap:
        feed_map = self.feed_map_loader()
        if inspect.isawaitable(feed_map):
            feed_map = await feed_map
        return feed_map

    async def route(self, event: LogEvent) -> List[DispatchResult]:
        feed_map = await self._feed_map()
        route = feed_map.resolve(event.category)
        if route is None:
            return [DispatchResult(None, event.category, DispatchStatus.DROPPED)]

        template = route.template
        if SEVERITY_RANK[template.severity] < SEVERITY_RANK[self.min_severity]:
            return [DispatchResult(d, event.category, DispatchStatus.DROPPED) for d in route.destinations]

        results = []
        for destination in route.destinations:
            results.append(await self._dispatch(destination, event, template))
        return results

    async def _dispatch(self, destination: int, event: LogEvent, template: FeedTemplate) -> DispatchResult:
        gated = template.alert_worthy and template.cooldown_seconds > 0
        now = self._clock()

        if gated and not self.cooldowns.is_open(destination, event.category, now):
            self.suppressed += 1
            logger.debug(f"🔕 {event.category.value} to {destination} suppressed until "
                         f"{self.cooldowns.next_allowed_at(destination, event.category)}")
            return DispatchResult(destination, event.category, DispatchStatus.SUPPRESSED)

        try:
            await self.sink.send(destination, event, template)
        except DispatchError as e:
            self.failed += 1
            logger.warning(f"❌ Failed to deliver {event.category.value} to {destination}: {e}")
            return DispatchResult(destination, event.category, DispatchStatus.FAILED, str(e))

        if gated:
            self.cooldowns.start(destination, event.category, now, template.cooldown_seconds)
        self.delivered += 1
        return DispatchResult(destination, event.category, DispatchStatus.DELIVERED)
