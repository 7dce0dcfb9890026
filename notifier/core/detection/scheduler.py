"""
Detection Scheduler.

APScheduler-based runner for the periodic detectors:
- reminder sweep on a cron expression (``*/30 * * * *`` by default),
  evaluated in the business timezone
- appointment poll on a fixed interval, first cycle right away
- one early reminder sweep shortly after startup (development only)

The push listener is a long-lived subscription and is not scheduled here.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from notifier.config import get_settings
from .poller import AppointmentPoller
from .reminders import ReminderSweep

logger = logging.getLogger(__name__)

REMINDER_JOB = "reminder_sweep"
INITIAL_REMINDER_JOB = "initial_reminder_sweep"
POLL_JOB = "appointment_poll"


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class DetectionScheduler:
    """Owns the AsyncIOScheduler that drives the sweep and the poller."""

    def __init__(
        self,
        sweep: ReminderSweep,
        poller: Optional[AppointmentPoller] = None,
        reminder_cron: Optional[str] = None,
        poll_interval: Optional[float] = None,
        initial_delay: Optional[float] = None,
        run_initial: Optional[bool] = None,
        timezone_name: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the scheduler.

        Args:
            sweep: Reminder sweep, run on ``reminder_cron``
            poller: Polling detector; None when changes are pushed
            reminder_cron: Crontab expression for the sweep
            poll_interval: Seconds between polling cycles
            initial_delay: Delay of the startup sweep (seconds)
            run_initial: Whether to schedule the startup sweep
            timezone_name: Timezone the cron expression is read in
            clock: Source of the current time
        """
        settings = get_settings()
        self.sweep = sweep
        self.poller = poller
        self.reminder_cron = reminder_cron or settings.reminder_cron
        self.poll_interval = poll_interval if poll_interval is not None else settings.poll_interval
        self.initial_delay = (
            initial_delay if initial_delay is not None else settings.initial_sweep_delay
        )
        self.run_initial = run_initial if run_initial is not None else settings.is_development
        self.tz = ZoneInfo(timezone_name or settings.timezone)
        self._clock = clock

        self._scheduler: Optional[AsyncIOScheduler] = None
        self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def scheduler(self) -> Optional[AsyncIOScheduler]:
        return self._scheduler

    async def start(self) -> None:
        """Register the jobs and start the scheduler."""
        if self._is_running:
            logger.warning("Detection scheduler already running")
            return

        scheduler = AsyncIOScheduler(timezone=self.tz)
        self._scheduler = scheduler

        scheduler.add_job(
            self.sweep.tick,
            CronTrigger.from_crontab(self.reminder_cron, timezone=self.tz),
            id=REMINDER_JOB,
            name="Appointment Reminder Sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        if self.run_initial:
            scheduler.add_job(
                self.sweep.tick,
                DateTrigger(
                    run_date=self._clock() + timedelta(seconds=self.initial_delay),
                    timezone=self.tz,
                ),
                id=INITIAL_REMINDER_JOB,
                name="Startup Reminder Sweep",
                replace_existing=True,
            )

        if self.poller is not None:
            scheduler.add_job(
                self.poller.tick,
                IntervalTrigger(seconds=self.poll_interval, timezone=self.tz),
                id=POLL_JOB,
                name="Appointment Poll",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                next_run_time=self._clock(),
            )

        scheduler.start()
        self._is_running = True
        polling = f", poll every {self.poll_interval}s" if self.poller is not None else ""
        logger.info(
            f"Detection scheduler started with timezone {self.tz} "
            f"(reminders '{self.reminder_cron}'{polling})"
        )

    async def stop(self) -> None:
        """Stop the scheduler; running jobs are cancelled."""
        if self._scheduler and self._is_running:
            self._scheduler.shutdown(wait=False)
            self._is_running = False
            logger.info("Detection scheduler stopped")
