"""
Reminder sweep.

On every scheduled run (``reminder_cron``, every 30 minutes by default) the
sweep looks for pending or confirmed appointments starting between
``now + window_start`` and ``now + window_end`` minutes and emits ReminderDue
for each. Scheduling lives in ``notifier.core.detection.scheduler``.

The sweep remembers the upper bound it last covered. When the cadence is
longer than the window, the next query starts from that bound instead of
``now + window_start``, so no appointment falls between two sweeps.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from notifier.config import get_settings
from notifier.core.notifications.dispatcher import DispatchResult
from notifier.core.notifications.events import ReminderDue
from notifier.infra.repositories import AppointmentRepository
from notifier.models.database import AppointmentStatus
from .batch import EventHandler, Sleeper, dispatch_batch

logger = logging.getLogger(__name__)

REMINDABLE_STATUSES = (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def reminder_window(
    now: datetime,
    start_minutes: int,
    end_minutes: int,
    covered_until: Optional[datetime] = None,
) -> tuple[datetime, datetime]:
    """Compute the [start, end] range of scheduled times to remind.

    Args:
        now: Time of the sweep
        start_minutes: Minutes ahead where the window opens
        end_minutes: Minutes ahead where the window closes
        covered_until: Upper bound of the previous successful sweep

    Returns:
        (start, end) datetimes; start never precedes ``now``

    Example:
        >>> start, end = reminder_window(now, 55, 65)
        >>> end - start
        datetime.timedelta(seconds=600)
    """
    start = now + timedelta(minutes=start_minutes)
    end = now + timedelta(minutes=end_minutes)
    if covered_until is not None and covered_until < start:
        start = max(covered_until, now)
    return start, end


class ReminderSweep:
    """Periodic detector for appointments that are about to start."""

    def __init__(
        self,
        handle: EventHandler,
        appointments: Optional[AppointmentRepository] = None,
        window_start: Optional[int] = None,
        window_end: Optional[int] = None,
        send_spacing: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Optional[Sleeper] = None,
    ):
        settings = get_settings()
        self._handle = handle
        self._appointments = appointments or AppointmentRepository()
        self._window_start = (
            window_start if window_start is not None else settings.reminder_window_start
        )
        self._window_end = window_end if window_end is not None else settings.reminder_window_end
        self._spacing = send_spacing if send_spacing is not None else settings.send_spacing
        self._clock = clock
        self._sleep = sleep
        self.covered_until: Optional[datetime] = None

    async def run_once(self, now: Optional[datetime] = None) -> list[DispatchResult]:
        """Run one sweep and dispatch the reminders it finds."""
        now = now or self._clock()
        start, end = reminder_window(now, self._window_start, self._window_end, self.covered_until)
        logger.info(f"Reminder sweep: appointments between {start:%H:%M} and {end:%H:%M} UTC")

        try:
            refs = await self._appointments.scheduled_between(start, end, REMINDABLE_STATUSES)
        except SQLAlchemyError as e:
            logger.error(f"Reminder query failed: {e}")
            return []

        if self.covered_until is None or end > self.covered_until:
            self.covered_until = end

        if not refs:
            logger.info("No reminders due")
            return []

        logger.info(f"{len(refs)} reminder(s) due")
        events = [ReminderDue(ref.id) for ref in refs]
        return await dispatch_batch(self._handle, events, self._spacing, self._sleep)

    async def tick(self) -> None:
        """Scheduled entry point. Failures are logged, never raised."""
        try:
            await self.run_once()
        except Exception:
            logger.exception("Reminder sweep failed")
