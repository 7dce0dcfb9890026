"""
Poll-based change detection.

Every cycle (an interval job of the detection scheduler):
- new appointments: created_at >= cursor, then the cursor moves to the
  instant the cycle started (even on empty results or query failure)
- cancellations: cancelled appointments updated in a trailing window

A failed query is not retried on the next cycle. Overlapping windows
produce duplicates, which the dispatcher absorbs.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from notifier.config import get_settings
from notifier.core.notifications.dispatcher import DispatchResult
from notifier.core.notifications.events import AppointmentCancelled, AppointmentCreated
from notifier.infra.repositories import AppointmentRepository
from .batch import EventHandler, Sleeper, dispatch_batch

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class DetectionCursor:
    """Lower bound of the next creation query. Never moves backwards."""

    last_checked_at: datetime

    def advance(self, to: datetime) -> None:
        """Move the bound forward to ``to``; earlier instants are ignored."""
        if to > self.last_checked_at:
            self.last_checked_at = to


class AppointmentPoller:
    """Periodic detector for created and cancelled appointments."""

    def __init__(
        self,
        handle: EventHandler,
        appointments: Optional[AppointmentRepository] = None,
        cancellation_window: Optional[float] = None,
        send_spacing: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Optional[Sleeper] = None,
    ):
        settings = get_settings()
        self._handle = handle
        self._appointments = appointments or AppointmentRepository()
        self._window = timedelta(
            seconds=(
                cancellation_window
                if cancellation_window is not None
                else settings.cancellation_window
            )
        )
        self._spacing = send_spacing if send_spacing is not None else settings.send_spacing
        self._clock = clock
        self._sleep = sleep
        self.cursor = DetectionCursor(last_checked_at=clock())

    async def poll_created(self) -> list[DispatchResult]:
        """Detect and dispatch appointments created since the cursor."""
        cycle_started = self._clock()
        try:
            refs = await self._appointments.created_since(self.cursor.last_checked_at)
        except SQLAlchemyError as e:
            logger.error(f"Query for new appointments failed: {e}")
            refs = []
        finally:
            self.cursor.advance(cycle_started)

        if not refs:
            return []
        logger.info(f"{len(refs)} new appointment(s) detected")
        events = [AppointmentCreated(ref.id) for ref in refs]
        return await dispatch_batch(self._handle, events, self._spacing, self._sleep)

    async def poll_cancelled(self) -> list[DispatchResult]:
        """Detect and dispatch appointments cancelled in the trailing window."""
        since = self._clock() - self._window
        try:
            refs = await self._appointments.cancelled_since(since)
        except SQLAlchemyError as e:
            logger.error(f"Query for cancelled appointments failed: {e}")
            return []

        if not refs:
            return []
        logger.info(f"{len(refs)} cancelled appointment(s) in the last {self._window}")
        events = [AppointmentCancelled(ref.id) for ref in refs]
        return await dispatch_batch(self._handle, events, self._spacing, self._sleep)

    async def run_once(self) -> list[DispatchResult]:
        """One polling cycle: creations first, then cancellations."""
        created = await self.poll_created()
        cancelled = await self.poll_cancelled()
        return created + cancelled

    async def tick(self) -> None:
        """Scheduled entry point. Failures are logged, never raised."""
        try:
            await self.run_once()
        except Exception:
            logger.exception("Polling cycle failed")
