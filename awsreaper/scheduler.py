"""
Background scheduling.

Scheduler runs three daemon loops: the reap cycle every interval (first run
immediately), a price refresh every prices_interval, and a once-a-minute
check of the per-resource scale-down/scale-up cron jobs held in
ResourceSchedules.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from .cron import CronExpression
from .errors import ReaperError
from .state import truncate, utcnow

logger = logging.getLogger(__name__)

SCALE_DOWN = "scale_down"
SCALE_UP = "scale_up"


@dataclass
class ScheduledJob:
    resource: Any
    action: str
    cron: CronExpression
    last_fired: Optional[datetime] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.resource.region, self.resource.id)


class ResourceSchedules:
    """
    Cron jobs that scale resources down and up.

    Jobs are keyed by (region, id) and replaced when a resource registers
    again, so every cycle refreshes them with the latest snapshot of the
    resource and its schedule tag.
    """

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run
        self._lock = threading.Lock()
        self._jobs: Dict[Tuple[str, str], List[ScheduledJob]] = {}

    def register(self, resource: Any, scale_down: str, scale_up: str) -> bool:
        """
        Install the scale-down and scale-up jobs for one resource.

        Returns:
            False if either expression is invalid; existing jobs are kept then
        """
        try:
            down = CronExpression.parse(scale_down)
            up = CronExpression.parse(scale_up)
        except ValueError as e:
            logger.error(f"Invalid schedule for {resource.description_tiny()}: {e}")
            return False

        key = (resource.region, resource.id)
        with self._lock:
            previous = {job.action: job for job in self._jobs.get(key, [])}
            jobs = []
            for action, cron in ((SCALE_DOWN, down), (SCALE_UP, up)):
                job = ScheduledJob(resource, action, cron)
                old = previous.get(action)
                if old is not None and old.cron.expression == cron.expression:
                    job.last_fired = old.last_fired
                jobs.append(job)
            self._jobs[key] = jobs
        return True

    def register_resource(self, resource: Any) -> bool:
        """Register the schedule carried by a resource's schedule tag."""
        if not resource.scheduling:
            return False
        down, up = resource.scheduling
        return self.register(resource, down, up)

    def unregister(self, region: str, resource_id: str) -> None:
        with self._lock:
            self._jobs.pop((region, resource_id), None)

    def jobs(self) -> List[ScheduledJob]:
        with self._lock:
            return [job for jobs in self._jobs.values() for job in jobs]

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def run_due(self, now: Optional[datetime] = None) -> List[ScheduledJob]:
        """
        Fire every job whose expression matches the current minute.

        Each job fires at most once per minute. A failing job is logged and
        the others still run.

        Returns:
            Jobs that fired
        """
        minute = truncate(now or utcnow()).replace(second=0)
        fired = []
        for job in self.jobs():
            if job.last_fired == minute or not job.cron.matches(minute):
                continue
            job.last_fired = minute
            fired.append(job)
            try:
                self._fire(job)
            except ReaperError as e:
                logger.error(f"Scheduled {job.action} of {job.resource.description_tiny()} failed: {e}")
        return fired

    def _fire(self, job: ScheduledJob) -> None:
        resource = job.resource
        if self.dry_run:
            logger.info(f"Dry run: would {job.action} {resource.description_tiny()} ({job.cron})")
            return
        logger.info(f"Running scheduled {job.action} of {resource.description_tiny()} ({job.cron})")
        getattr(resource, job.action)()


class Scheduler:
    """Runs the reaper and its auxiliary jobs on background threads."""

    def __init__(self, reaper: Any, interval: timedelta, prices_interval: Optional[timedelta] = None,
                 schedule_check: timedelta = timedelta(minutes=1)):
        self.reaper = reaper
        self.interval = interval
        self.prices_interval = prices_interval
        self.schedule_check = schedule_check
        self.stop_event = threading.Event()
        self._run_lock = threading.Lock()
        self.threads: List[threading.Thread] = []

    def tick(self) -> bool:
        """
        Run one reap cycle unless the previous one is still going.

        Returns:
            True if a cycle ran
        """
        if not self._run_lock.acquire(blocking=False):
            logger.warning("Previous reap cycle still running, skipping this tick")
            return False
        try:
            self.reaper.run()
        except Exception as e:
            logger.exception(f"Reap cycle failed: {e}")
        finally:
            self._run_lock.release()
        return True

    def refresh_prices(self) -> None:
        try:
            self.reaper.refresh_prices()
        except Exception as e:
            logger.error(f"Price refresh failed: {e}")

    def run_schedules(self) -> None:
        try:
            self.reaper.schedules.run_due()
        except Exception as e:
            logger.exception(f"Schedule check failed: {e}")

    def _loop(self, name: str, every: timedelta, job: Callable[[], Any]) -> threading.Thread:
        def worker():
            logger.info(f"Starting {name} loop, every {every}")
            while not self.stop_event.is_set():
                job()
                self.stop_event.wait(every.total_seconds())

        thread = threading.Thread(target=worker, name=f"awsreaper-{name}", daemon=True)
        thread.start()
        self.threads.append(thread)
        return thread

    def start(self) -> None:
        self.stop_event.clear()
        if self.prices_interval and self.reaper.config.prices_url:
            self._loop("prices", self.prices_interval, self.refresh_prices)
        self._loop("reap", self.interval, self.tick)
        self._loop("schedules", self.schedule_check, self.run_schedules)

    def stop(self, timeout: Optional[float] = None) -> None:
        self.stop_event.set()
        for thread in self.threads:
            thread.join(timeout)
        self.threads = []
