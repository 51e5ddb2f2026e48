"""
Logfeed - Monitoring Manager
Registry of service monitors and the operations other parts of the bot call
"""

import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from logfeed.config import BotConfig
from logfeed.monitoring.monitor import MonitorReport, MonitorState, MonitorStatus, ServiceMonitor
from logfeed.parsers.log_classifier import LineClassifier
from logfeed.parsers.session_tracker import ActivitySummary, OnlinePlayer
from logfeed.sources import LocalFileSource, NitradoFileSource, RetryPolicy, default_log_path
from logfeed.utils.feed_map import FeedMap
from logfeed.utils.notification_router import NotificationRouter

logger = logging.getLogger(__name__)


def default_source_factory(credential: str):
    if BotConfig.DEV_LOG_DIR:
        return LocalFileSource(BotConfig.DEV_LOG_DIR)
    return NitradoFileSource(
        credential,
        base_url=BotConfig.NITRADO_API_URL,
        retry_policy=RetryPolicy(
            max_retries=BotConfig.RETRY_MAX_ATTEMPTS,
            base_delay=BotConfig.RETRY_BASE_DELAY,
            max_delay=BotConfig.RETRY_MAX_DELAY,
        ),
        timeout=BotConfig.REQUEST_TIMEOUT_SECONDS,
    )


class LogFeedService:
    """
    One monitor per service id. Failures inside one monitor never reach the
    others; a tripped monitor stays registered so its status can be read
    until an operator stops or restarts it.
    """

    def __init__(self, sink, scheduler, *, database=None,
                 source_factory: Optional[Callable[[str], Any]] = None,
                 feed_map: Optional[FeedMap] = None, monitor_options: Optional[Dict[str, Any]] = None):
        self.sink = sink
        self.scheduler = scheduler
        self.database = database
        self.source_factory = source_factory or default_source_factory
        self.feed_map = feed_map or FeedMap.load(BotConfig.FEED_MAP_PATH or None)
        self.classifier = LineClassifier()
        self.monitors: Dict[str, ServiceMonitor] = {}
        self.monitor_options = {
            'interval': BotConfig.POLL_INTERVAL_SECONDS,
            'min_interval': BotConfig.MIN_POLL_INTERVAL_SECONDS,
            'max_errors': BotConfig.MAX_CONSECUTIVE_ERRORS,
            'inter_file_delay': BotConfig.INTER_FILE_DELAY_SECONDS,
            'max_files': BotConfig.MAX_FILES_PER_TICK,
        }
        self.monitor_options.update(monitor_options or {})

    async def start_monitoring(self, service_id, credential: str, destinations: Dict[str, Any], *,
                               log_path: Optional[str] = None, interval: Optional[float] = None,
                               feed_overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> bool:
        service_id = str(service_id)
        existing = self.monitors.get(service_id)
        if existing and existing.active:
            logger.info(f"Service {service_id} is already being monitored")
            return True
        if existing:
            # Tripped or stopped: an explicit start replaces it
            await self.stop_monitoring(service_id)

        source = self.source_factory(credential)
        log_path = log_path or default_log_path(service_id)
        if not await source.test_access(service_id, log_path):
            await source.close()
            logger.error(f"❌ Cannot start monitoring service {service_id}: log directory unreachable")
            return False

        feed_map = self.feed_map.with_destinations(destinations or {})
        if feed_overrides:
            feed_map = feed_map.with_overrides(feed_overrides)

        router = NotificationRouter(
            self.sink,
            lambda: feed_map,
            min_severity=BotConfig.MIN_NOTIFY_SEVERITY,
        )

        options = dict(self.monitor_options)
        if interval is not None:
            options['interval'] = interval

        monitor = ServiceMonitor(
            service_id,
            source,
            router,
            scheduler=self.scheduler,
            database=self.database,
            classifier=self.classifier,
            log_path=log_path,
            **options,
        )

        if self.database is not None:
            monitor.tracker.restore(await self.database.get_file_offsets(service_id))

        self.monitors[service_id] = monitor
        monitor.start()
        return True

    async def stop_monitoring(self, service_id) -> Optional[MonitorReport]:
        monitor = self.monitors.pop(str(service_id), None)
        if monitor is None:
            return None
        report = monitor.stop()
        await monitor.source.close()
        return report

    async def stop_all(self) -> Dict[str, MonitorReport]:
        reports = {}
        for service_id in list(self.monitors):
            reports[service_id] = await self.stop_monitoring(service_id)
        logger.info(f"Stopped {len(reports)} monitors")
        return reports

    def get_status(self, service_id) -> Optional[MonitorStatus]:
        monitor = self.monitors.get(str(service_id))
        return monitor.status() if monitor else None

    def get_all_monitors(self) -> Dict[str, MonitorStatus]:
        return {service_id: monitor.status() for service_id, monitor in self.monitors.items()}

    def update_interval(self, service_id, seconds: float) -> Optional[float]:
        monitor = self.monitors.get(str(service_id))
        if monitor is None:
            return None
        return monitor.update_interval(seconds)

    def summary(self, service_id, window: timedelta = timedelta(hours=24)) -> Optional[ActivitySummary]:
        monitor = self.monitors.get(str(service_id))
        return monitor.summary(window) if monitor else None

    def current_players(self, service_id) -> List[OnlinePlayer]:
        monitor = self.monitors.get(str(service_id))
        return monitor.current_players() if monitor else []

    def tripped_monitors(self) -> List[str]:
        return [sid for sid, m in self.monitors.items() if m.state == MonitorState.TRIPPED]

    async def start_configured(self) -> int:
        """Start every service stored in the guild configs"""
        if self.database is None:
            return 0

        started = 0
        for service in await self.database.get_monitored_services():
            try:
                ok = await self.start_monitoring(
                    service['service_id'],
                    service['token'],
                    service.get('channels', {}),
                    log_path=service.get('log_path'),
                    interval=service.get('interval'),
                    feed_overrides=service.get('feed_overrides'),
                )
            except (KeyError, ValueError) as e:
                logger.error(f"Invalid server config in guild {service.get('guild_id')}: {e}")
                continue
            if ok:
                started += 1
        logger.info(f"Started {started} configured monitors")
        return started
