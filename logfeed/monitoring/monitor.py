"""
Logfeed - Service Monitor
Polling loop for one Nitrado service: list, delta-read, classify, reduce,
route. Each monitor owns its offsets and sessions; nothing is shared between
services.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from logfeed.models.events import FileMeta
from logfeed.parsers.log_classifier import LineClassifier
from logfeed.parsers.offset_tracker import OffsetTracker
from logfeed.parsers.session_tracker import SessionTracker
from logfeed.sources import default_log_path, select_log_files
from logfeed.sources.errors import RateLimitedError, RemoteSourceError

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 300.0
MIN_INTERVAL = 120.0
MAX_CONSECUTIVE_ERRORS = 10
INTER_FILE_DELAY = 1.0
MAX_FILES_PER_TICK = 2


class MonitorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    TRIPPED = "tripped"


@dataclass(frozen=True)
class MonitorStatus:
    active: bool
    state: str
    last_check: Optional[datetime]
    checks_completed: int
    events_processed: int
    errors: int
    consecutive_errors: int
    interval: float
    files_tracked: int
    rotations: int


@dataclass(frozen=True)
class MonitorReport:
    events_processed: int
    checks_completed: int
    errors: int
    uptime: timedelta


class ServiceMonitor:
    """
    Idle -> Running -> Idle (stopped) or Tripped (too many consecutive errors).

    Ticks are scheduled on the bot's APScheduler instance. A tick that is
    still running when the next one is due makes the next one a no-op, so
    two reads of the same file never overlap.
    """

    def __init__(self, service_id: str, source, router, *, scheduler=None, database=None,
                 classifier: Optional[LineClassifier] = None, log_path: Optional[str] = None,
                 interval: float = DEFAULT_INTERVAL, min_interval: float = MIN_INTERVAL,
                 max_errors: int = MAX_CONSECUTIVE_ERRORS, inter_file_delay: float = INTER_FILE_DELAY,
                 max_files: int = MAX_FILES_PER_TICK, clock=None, sleep=None):
        self.service_id = str(service_id)
        self.source = source
        self.router = router
        self.scheduler = scheduler
        self.database = database
        self.classifier = classifier or LineClassifier()
        self.log_path = log_path or default_log_path(self.service_id)
        self.min_interval = min_interval
        self.interval = max(float(interval), min_interval)
        self.max_errors = max_errors
        self.inter_file_delay = inter_file_delay
        self.max_files = max_files
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep or asyncio.sleep

        self.tracker = OffsetTracker(self.service_id, source)
        self.sessions = SessionTracker(self.service_id, clock=self._clock)

        self.state = MonitorState.IDLE
        self.is_tick_running = False
        self.consecutive_errors = 0
        self.errors = 0
        self.checks_completed = 0
        self.events_processed = 0
        self.started_at: Optional[datetime] = None
        self.last_check: Optional[datetime] = None
        self.last_error: Optional[str] = None

    @property
    def job_id(self) -> str:
        return f"log_monitor_{self.service_id}"

    @property
    def active(self) -> bool:
        return self.state == MonitorState.RUNNING

    def start(self):
        if self.active:
            return
        self.state = MonitorState.RUNNING
        self.started_at = self._clock()
        self.consecutive_errors = 0

        if self.scheduler is not None:
            self.scheduler.add_job(
                self.tick,
                'interval',
                seconds=self.interval,
                id=self.job_id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                next_run_time=datetime.now(timezone.utc),
            )
        logger.info(f"🟢 Monitoring service {self.service_id} every {self.interval:.0f}s ({self.log_path})")

    def _remove_job(self):
        if self.scheduler is not None and self.scheduler.get_job(self.job_id):
            self.scheduler.remove_job(self.job_id)

    def stop(self) -> MonitorReport:
        """Cancel future ticks; a tick already running finishes on its own"""
        self._remove_job()
        if self.state == MonitorState.RUNNING:
            self.state = MonitorState.IDLE
        report = MonitorReport(
            events_processed=self.events_processed,
            checks_completed=self.checks_completed,
            errors=self.errors,
            uptime=(self._clock() - self.started_at) if self.started_at else timedelta(0),
        )
        logger.info(f"🔴 Stopped monitoring service {self.service_id}: "
                    f"{report.checks_completed} checks, {report.events_processed} events, {report.errors} errors")
        return report

    def update_interval(self, seconds: float) -> float:
        new_interval = max(float(seconds), self.min_interval)
        if new_interval != seconds:
            logger.warning(f"Interval {seconds}s is below the {self.min_interval:.0f}s floor, using {new_interval:.0f}s")
        self.interval = new_interval
        if self.active and self.scheduler is not None and self.scheduler.get_job(self.job_id):
            self.scheduler.reschedule_job(self.job_id, trigger='interval', seconds=new_interval)
        logger.info(f"⏱️ Service {self.service_id} interval set to {new_interval:.0f}s")
        return new_interval

    def status(self) -> MonitorStatus:
        return MonitorStatus(
            active=self.active,
            state=self.state.value,
            last_check=self.last_check,
            checks_completed=self.checks_completed,
            events_processed=self.events_processed,
            errors=self.errors,
            consecutive_errors=self.consecutive_errors,
            interval=self.interval,
            files_tracked=len(self.tracker.files),
            rotations=self.tracker.rotations,
        )

    async def tick(self):
        if not self.active:
            return
        if self.is_tick_running:
            logger.debug(f"Previous tick for service {self.service_id} still running, skipping")
            return

        self.is_tick_running = True
        try:
            await self._run_tick()
        finally:
            self.is_tick_running = False

        if self.active and self.consecutive_errors >= self.max_errors:
            self._trip()

    async def _run_tick(self):
        failures = 0
        events = 0

        try:
            entries = await self.source.list_files(self.service_id, self.log_path)
        except RemoteSourceError as e:
            self._record_error(e)
            return

        self.tracker.forget_missing(entry.path for entry in entries if entry.is_file)
        files = select_log_files(entries, self.max_files)
        if not files:
            logger.debug(f"No log files found in {self.log_path} for service {self.service_id}")

        for index, meta in enumerate(files):
            if index:
                await self._sleep(self.inter_file_delay)
            if not self.active:
                # Stopped mid-tick; the source may already be closed
                break
            try:
                events += await self._process_file(meta)
            except RemoteSourceError as e:
                failures += 1
                self._record_error(e, meta.path)
            except Exception as e:
                failures += 1
                logger.exception(f"Unexpected error processing {meta.path} for service {self.service_id}")
                self._record_error(e, meta.path)

        self.checks_completed += 1
        self.events_processed += events
        self.last_check = self._clock()
        if not failures:
            self.consecutive_errors = 0
        if events:
            logger.info(f"📜 Service {self.service_id}: {events} new events from {len(files)} files")

    async def _process_file(self, meta: FileMeta) -> int:
        delta = await self.tracker.read_delta(meta)
        if delta.rotated:
            logger.info(f"🔁 {meta.name} rotated on service {self.service_id}, reading from the start")

        events = []
        effects = []
        if delta.has_content:
            events = self.classifier.classify_lines(delta.text(), self.service_id, meta.path, self._clock())
            for event in events:
                event_effects = self.sessions.apply(event)
                self.sessions.commit(event_effects)
                effects.extend(event_effects)

        # Sessions and offset are committed before anything is routed, so a
        # delivery failure never makes the same lines count twice
        self.tracker.commit(delta, self._clock())

        if self.database is not None and delta.has_content:
            await self.database.save_file_offset(self.service_id, meta.path, delta.updated_offset)
            if effects:
                await self.database.persist_effects(self.service_id, effects)

        for event in events:
            await self._notify(event)
        return len(events)

    async def _notify(self, event):
        """Notification failures are logged and dropped; they never fail the file"""
        try:
            await self.router.route(event)
        except Exception:
            logger.exception(f"Routing {event.category.value} event failed on service {self.service_id}")

    def _record_error(self, error: Exception, path: Optional[str] = None):
        self.errors += 1
        self.consecutive_errors += 1
        self.last_error = str(error)
        where = f" reading {path}" if path else ""
        if isinstance(error, RateLimitedError):
            logger.warning(f"⏳ Service {self.service_id} rate limited{where}: {error} "
                           f"({self.consecutive_errors}/{self.max_errors})")
        else:
            logger.error(f"❌ Service {self.service_id} error{where}: {error} "
                         f"({self.consecutive_errors}/{self.max_errors})")

    def _trip(self):
        self.state = MonitorState.TRIPPED
        self._remove_job()
        logger.error(f"🛑 Circuit breaker tripped for service {self.service_id} after "
                     f"{self.consecutive_errors} consecutive errors, monitoring stopped")

    # Read-only views

    def summary(self, window: timedelta):
        return self.sessions.summary(window)

    def current_players(self):
        return self.sessions.current_players()

    def recent_kills(self, limit: int = 10) -> List:
        return self.sessions.recent_kills(limit)
