"""
Notification Dispatcher.

Turns an appointment event into one delivered WhatsApp message plus an
audit record, at most once per (appointment, kind).

Two dedup orderings:
- confirmation/reminder: send, then record. A lost insert race after a
  successful send is benign.
- cancellation: record a pending claim, then send. Whoever loses the insert
  never sends.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from notifier.config import get_settings
from notifier.core.errors import (
    ErrorKind,
    NoRecipientAddressError,
    NotifierError,
    SubjectNotFoundError,
)
from notifier.infra.repositories import AppointmentRepository, NotificationRepository
from notifier.models.database import DeliveryStatus, NotificationKind
from .events import AppointmentEvent
from .phone import normalize_phone, to_address
from .templates import MessageTemplates

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class MessageSender(Protocol):
    """The slice of ConnectionManager the dispatcher needs."""

    def is_connected(self) -> bool: ...

    async def send(self, address: str, content: str) -> None: ...

    async def send_image(
        self, address: str, image_url: str, caption: Optional[str] = None
    ) -> None: ...


@dataclass
class DispatchResult:
    """Uniform outcome of a dispatch; never an exception."""

    delivered: bool
    reason: Optional[ErrorKind] = None
    detail: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary, omitting empty fields."""
        result: dict = {"delivered": self.delivered}
        if self.reason is not None:
            result["reason"] = self.reason.value
        if self.detail:
            result["detail"] = self.detail
        return result


@dataclass
class _PreparedMessage:
    phone: str
    address: str
    body: str


class NotificationDispatcher:
    """
    Dispatches appointment events to customers.

    Dependencies are injected so tests can swap the stores and the sender:
    - appointments: AppointmentRepository-like reader
    - notifications: NotificationRepository-like store
    - sender: ConnectionManager (send + is_connected)
    - templates: MessageTemplates renderer
    """

    def __init__(
        self,
        sender: MessageSender,
        appointments: Optional[AppointmentRepository] = None,
        notifications: Optional[NotificationRepository] = None,
        templates: Optional[MessageTemplates] = None,
        country_prefix: Optional[str] = None,
        address_suffix: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        settings = get_settings()
        self._sender = sender
        self._appointments = appointments or AppointmentRepository()
        self._notifications = notifications or NotificationRepository()
        self._templates = templates or MessageTemplates()
        self._country_prefix = country_prefix or settings.country_prefix
        self._address_suffix = address_suffix or settings.address_suffix
        self._clock = clock

    async def handle(self, event: AppointmentEvent) -> DispatchResult:
        """Deliver the notification for an event.

        Args:
            event: AppointmentCreated, AppointmentCancelled or ReminderDue

        Returns:
            DispatchResult; lower-level failures are classified, not raised
        """
        kind = event.kind
        appointment_id = event.appointment_id
        logger.info(f"Dispatching {kind.value} for appointment {appointment_id}")

        try:
            if kind is NotificationKind.CANCELLATION:
                result = await self._claim_then_send(appointment_id, kind)
            else:
                result = await self._send_then_record(appointment_id, kind)
        except NotifierError as e:
            logger.warning(f"{kind.value} for {appointment_id} not delivered: {e}")
            return DispatchResult(delivered=False, reason=e.kind, detail=str(e))
        except SQLAlchemyError as e:
            logger.error(f"Store error dispatching {kind.value} for {appointment_id}: {e}")
            return DispatchResult(
                delivered=False,
                reason=ErrorKind.STORE_UNAVAILABLE,
                detail=str(e),
            )
        except Exception as e:
            logger.exception(f"Unexpected error dispatching {kind.value} for {appointment_id}")
            return DispatchResult(delivered=False, reason=ErrorKind.UNEXPECTED, detail=str(e))

        if result.reason is None:
            logger.info(f"{kind.value} delivered for appointment {appointment_id}")
        return result

    async def send_custom(
        self,
        phone: str,
        text: str,
        customer_name: Optional[str] = None,
    ) -> DispatchResult:
        """Send an operator-written message; no record is kept.

        With a customer name the text is wrapped in the greeting and
        signature used by the other messages.
        """
        if customer_name:
            text = self._templates.custom(customer_name, text)
        return await self._send_direct(
            phone, "Custom message", lambda address: self._sender.send(address, text)
        )

    async def send_custom_image(
        self,
        phone: str,
        image_url: str,
        caption: Optional[str] = None,
        customer_name: Optional[str] = None,
    ) -> DispatchResult:
        """Send an operator-chosen image by URL; no record is kept.

        The caption gets the same greeting wrapper as ``send_custom`` when a
        customer name is given.
        """
        if caption and customer_name:
            caption = self._templates.custom(customer_name, caption)
        return await self._send_direct(
            phone,
            "Image",
            lambda address: self._sender.send_image(address, image_url, caption),
        )

    async def _send_direct(
        self,
        phone: str,
        label: str,
        send: Callable[[str], Awaitable[None]],
    ) -> DispatchResult:
        if not phone or not any(ch.isdigit() for ch in phone):
            return DispatchResult(
                delivered=False,
                reason=ErrorKind.NO_RECIPIENT_ADDRESS,
                detail="Phone number has no digits",
            )
        normalized = normalize_phone(phone, self._country_prefix)
        try:
            await send(to_address(normalized, self._address_suffix))
        except NotifierError as e:
            logger.warning(f"{label} to {normalized} not delivered: {e}")
            return DispatchResult(delivered=False, reason=e.kind, detail=str(e))
        logger.info(f"{label} sent to {normalized}")
        return DispatchResult(delivered=True)

    # === Flows ===

    async def _send_then_record(
        self,
        appointment_id: uuid.UUID,
        kind: NotificationKind,
    ) -> DispatchResult:
        existing = await self._notifications.find_by_appointment_and_kind(appointment_id, kind)
        if existing is not None:
            logger.info(f"{kind.value} already sent for {appointment_id}, skipping")
            return DispatchResult(delivered=True, reason=ErrorKind.ALREADY_NOTIFIED)

        message = await self._prepare(appointment_id, kind)
        await self._sender.send(message.address, message.body)

        try:
            inserted = await self._notifications.insert_if_absent(
                appointment_id,
                kind,
                message.phone,
                message.body,
                DeliveryStatus.SENT,
                sent_at=self._clock(),
            )
        except SQLAlchemyError as e:
            # Message is out; only the audit row is missing
            logger.error(f"Sent {kind.value} for {appointment_id} but could not record it: {e}")
            return DispatchResult(
                delivered=True,
                reason=ErrorKind.STORE_UNAVAILABLE,
                detail=str(e),
            )

        if not inserted:
            logger.warning(f"{kind.value} for {appointment_id} recorded concurrently")
            return DispatchResult(delivered=True, reason=ErrorKind.UNIQUENESS_RACE)
        return DispatchResult(delivered=True)

    async def _claim_then_send(
        self,
        appointment_id: uuid.UUID,
        kind: NotificationKind,
    ) -> DispatchResult:
        existing = await self._notifications.find_by_appointment_and_kind(appointment_id, kind)
        if existing is not None:
            logger.info(f"{kind.value} already handled for {appointment_id}, skipping")
            return DispatchResult(delivered=True, reason=ErrorKind.ALREADY_NOTIFIED)

        message = await self._prepare(appointment_id, kind)
        claimed = await self._notifications.insert_if_absent(
            appointment_id,
            kind,
            message.phone,
            message.body,
            DeliveryStatus.PENDING,
        )
        if not claimed:
            logger.info(f"{kind.value} for {appointment_id} claimed by another path")
            return DispatchResult(delivered=True, reason=ErrorKind.ALREADY_NOTIFIED)

        try:
            await self._sender.send(message.address, message.body)
        except Exception:
            await self._mark_failed(appointment_id, kind)
            raise

        try:
            await self._notifications.update_status(
                appointment_id,
                kind,
                DeliveryStatus.SENT,
                sent_at=self._clock(),
            )
        except SQLAlchemyError as e:
            # Claim stays pending; a later trigger still sees it and skips
            logger.error(f"Sent {kind.value} for {appointment_id} but could not mark it sent: {e}")
            return DispatchResult(
                delivered=True,
                reason=ErrorKind.STORE_UNAVAILABLE,
                detail=str(e),
            )
        return DispatchResult(delivered=True)

    # === Helpers ===

    async def _prepare(
        self,
        appointment_id: uuid.UUID,
        kind: NotificationKind,
    ) -> _PreparedMessage:
        details = await self._appointments.get_details(appointment_id)
        if details is None:
            raise SubjectNotFoundError(f"Appointment {appointment_id} not found")

        raw_phone = details.customer_phone
        if not raw_phone or not any(ch.isdigit() for ch in raw_phone):
            raise NoRecipientAddressError(
                f"Customer of appointment {appointment_id} has no phone number"
            )

        phone = normalize_phone(raw_phone, self._country_prefix)
        logger.debug(f"Phone {raw_phone!r} normalized to {phone}")
        body = self._templates.render(kind, details)
        return _PreparedMessage(
            phone=phone,
            address=to_address(phone, self._address_suffix),
            body=body,
        )

    async def _mark_failed(self, appointment_id: uuid.UUID, kind: NotificationKind) -> None:
        try:
            await self._notifications.update_status(appointment_id, kind, DeliveryStatus.FAILED)
        except SQLAlchemyError as e:
            logger.error(f"Could not mark {kind.value} for {appointment_id} as failed: {e}")
