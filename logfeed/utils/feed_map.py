"""
Logfeed - Feed Map
Which channel each event category goes to, and how it is displayed
"""

import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from logfeed.models.events import EventCategory

logger = logging.getLogger(__name__)

DEFAULT_FEED_MAP_PATH = Path(__file__).resolve().parent.parent / 'data' / 'feed_map.json'

SEVERITY_RANK = {'info': 0, 'warning': 1, 'severe': 2}

Destination = Union[int, List[int]]


@dataclass(frozen=True)
class FeedTemplate:
    category: EventCategory
    feed: str
    title: str
    color: int
    severity: str = 'info'
    cooldown_seconds: float = 0.0
    enabled: bool = True

    @property
    def alert_worthy(self) -> bool:
        return SEVERITY_RANK[self.severity] >= SEVERITY_RANK['warning']

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FeedTemplate':
        severity = data.get('severity', 'info').lower()
        if severity not in SEVERITY_RANK:
            raise ValueError(f"Unknown severity {severity!r} for {data.get('category')}")
        color = data.get('color', 0x9e9e9e)
        return cls(
            category=EventCategory(data['category']),
            feed=data.get('feed', data['category']),
            title=data.get('title', data['category'].replace('_', ' ').title()),
            color=int(color, 16) if isinstance(color, str) else int(color),
            severity=severity,
            cooldown_seconds=float(data.get('cooldown_seconds', 0)),
            enabled=bool(data.get('enabled', True)),
        )


@dataclass(frozen=True)
class FeedRoute:
    """A template resolved to concrete destinations"""

    template: FeedTemplate
    destinations: List[int]


class FeedMap:
    """
    Ordered templates plus a destination table. Destinations are keyed by
    category name or by feed name; the category key wins when both exist.
    """

    def __init__(self, templates: List[FeedTemplate], destinations: Optional[Dict[str, Destination]] = None):
        self.templates = templates
        self.destinations: Dict[str, List[int]] = {}
        for key, value in (destinations or {}).items():
            ids = value if isinstance(value, (list, tuple)) else [value]
            self.destinations[str(key)] = [int(channel_id) for channel_id in ids if channel_id]

    def template_for(self, category: EventCategory) -> Optional[FeedTemplate]:
        return next((t for t in self.templates if t.category == category), None)

    def resolve(self, category: EventCategory) -> Optional[FeedRoute]:
        template = self.template_for(category)
        if template is None or not template.enabled:
            return None
        destinations = self.destinations.get(category.value) or self.destinations.get(template.feed) or []
        if not destinations:
            return None
        return FeedRoute(template, destinations)

    def with_destinations(self, destinations: Dict[str, Destination]) -> 'FeedMap':
        merged: Dict[str, Destination] = dict(self.destinations)
        merged.update(destinations)
        return FeedMap(self.templates, merged)

    def with_overrides(self, overrides: Dict[str, Dict[str, Any]]) -> 'FeedMap':
        """Per-deployment tweaks, e.g. ``{"raid": {"cooldown_seconds": 600}}``"""
        templates = []
        for template in self.templates:
            changes = dict(overrides.get(template.category.value, {}))
            if 'color' in changes and isinstance(changes['color'], str):
                changes['color'] = int(changes['color'], 16)
            if 'cooldown_seconds' in changes:
                changes['cooldown_seconds'] = float(changes['cooldown_seconds'])
            templates.append(replace(template, **changes) if changes else template)
        return FeedMap(templates, self.destinations)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], destinations: Optional[Dict[str, Destination]] = None) -> 'FeedMap':
        templates = [FeedTemplate.from_dict(entry) for entry in data.get('routes', [])]
        return cls(templates, destinations or data.get('destinations'))

    @classmethod
    def load(cls, path: Optional[Path] = None, destinations: Optional[Dict[str, Destination]] = None) -> 'FeedMap':
        path = Path(path) if path else DEFAULT_FEED_MAP_PATH
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        feed_map = cls.from_dict(data, destinations)
        logger.debug(f"Loaded {len(feed_map.templates)} feed templates from {path}")
        return feed_map
