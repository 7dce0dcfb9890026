"""
Detection Module

Observes appointment mutations and turns them into typed events:
- AppointmentPoller: created_at cursor + cancellation window (default)
- AppointmentChangeListener: PostgreSQL LISTEN/NOTIFY push
- ReminderSweep: appointments entering the reminder window
- DetectionScheduler: runs the poller and the sweep on APScheduler

Usage:
    from notifier.core.detection import AppointmentPoller, DetectionScheduler, ReminderSweep

    scheduler = DetectionScheduler(
        ReminderSweep(dispatcher.handle),
        AppointmentPoller(dispatcher.handle),
    )
    await scheduler.start()
"""

from notifier.core.detection.batch import dispatch_batch
from notifier.core.detection.poller import AppointmentPoller, DetectionCursor
from notifier.core.detection.listener import (
    AppointmentChangeListener,
    ChangeNotification,
    events_from_change,
)
from notifier.core.detection.reminders import ReminderSweep, reminder_window
from notifier.core.detection.scheduler import DetectionScheduler

__all__ = [
    "dispatch_batch",
    "AppointmentPoller",
    "DetectionCursor",
    "AppointmentChangeListener",
    "ChangeNotification",
    "events_from_change",
    "ReminderSweep",
    "reminder_window",
    "DetectionScheduler",
]
