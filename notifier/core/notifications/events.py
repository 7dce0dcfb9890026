"""Typed appointment events emitted by the change detectors."""

import uuid
from dataclasses import dataclass
from typing import ClassVar, Union

from notifier.models.database import NotificationKind


@dataclass(frozen=True)
class AppointmentCreated:
    """A new appointment was booked."""

    appointment_id: uuid.UUID
    kind: ClassVar[NotificationKind] = NotificationKind.CONFIRMATION


@dataclass(frozen=True)
class AppointmentCancelled:
    """An appointment moved to the cancelled status."""

    appointment_id: uuid.UUID
    kind: ClassVar[NotificationKind] = NotificationKind.CANCELLATION


@dataclass(frozen=True)
class ReminderDue:
    """An appointment entered the reminder window."""

    appointment_id: uuid.UUID
    kind: ClassVar[NotificationKind] = NotificationKind.REMINDER


AppointmentEvent = Union[AppointmentCreated, AppointmentCancelled, ReminderDue]

EVENT_BY_KIND: dict[NotificationKind, type] = {
    NotificationKind.CONFIRMATION: AppointmentCreated,
    NotificationKind.CANCELLATION: AppointmentCancelled,
    NotificationKind.REMINDER: ReminderDue,
}


def event_for(kind: NotificationKind, appointment_id: uuid.UUID) -> AppointmentEvent:
    """Build the event that produces a notification of ``kind``."""
    return EVENT_BY_KIND[kind](appointment_id)
