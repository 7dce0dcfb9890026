"""
Notifications Module

Turns appointment events into delivered, deduplicated customer messages.

Usage:
    from notifier.core.notifications import NotificationDispatcher, AppointmentCreated

    dispatcher = NotificationDispatcher(connection_manager)
    result = await dispatcher.handle(AppointmentCreated(appointment_id))
"""

from notifier.core.notifications.events import (
    AppointmentCancelled,
    AppointmentCreated,
    AppointmentEvent,
    ReminderDue,
    event_for,
)
from notifier.core.notifications.phone import normalize_phone, to_address
from notifier.core.notifications.templates import BusinessInfo, MessageTemplates, format_price
from notifier.core.notifications.dispatcher import DispatchResult, NotificationDispatcher

__all__ = [
    # Events
    "AppointmentCancelled",
    "AppointmentCreated",
    "AppointmentEvent",
    "ReminderDue",
    "event_for",
    # Phone numbers
    "normalize_phone",
    "to_address",
    # Templates
    "BusinessInfo",
    "MessageTemplates",
    "format_price",
    # Dispatcher
    "DispatchResult",
    "NotificationDispatcher",
]
