"""
Appointment and notification repositories.

Thin async SQLAlchemy queries behind the interfaces the dispatcher and
detectors depend on. Each call opens its own short session so detectors
running concurrently never share one.
"""

import logging
import uuid
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from notifier.infra.database import get_db_context
from notifier.models.database import (
    Appointment,
    AppointmentStatus,
    DeliveryStatus,
    NotificationKind,
    NotificationRecord,
)

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

# PostgreSQL SQLSTATE for unique_violation
UNIQUE_VIOLATION = "23505"


def is_unique_violation(error: IntegrityError) -> bool:
    """Tell a uniqueness violation apart from other integrity errors."""
    orig = getattr(error, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is not None:
        return code == UNIQUE_VIOLATION
    return "unique" in str(orig).lower()


@dataclass
class AppointmentRef:
    """Minimal appointment row returned by detector queries."""

    id: uuid.UUID
    scheduled_at: datetime
    status: AppointmentStatus


@dataclass
class AppointmentDetails:
    """Appointment joined with customer, provider and service."""

    id: uuid.UUID
    scheduled_at: datetime
    status: AppointmentStatus
    customer_name: str
    customer_phone: Optional[str]
    provider_name: str
    service_name: str
    service_price: Optional[Decimal] = None
    notes: Optional[str] = None

    @classmethod
    def from_model(cls, appointment: Appointment) -> "AppointmentDetails":
        """Create from a loaded Appointment with its relationships."""
        return cls(
            id=appointment.id,
            scheduled_at=appointment.scheduled_at,
            status=appointment.status,
            customer_name=appointment.customer.name,
            customer_phone=appointment.customer.phone,
            provider_name=appointment.provider.name,
            service_name=appointment.service.name,
            service_price=appointment.service.price,
            notes=appointment.notes,
        )


def _ref(appointment: Appointment) -> AppointmentRef:
    return AppointmentRef(
        id=appointment.id,
        scheduled_at=appointment.scheduled_at,
        status=appointment.status,
    )


class AppointmentRepository:
    """Read-only queries over appointments."""

    def __init__(self, session_factory: SessionFactory = get_db_context):
        self._session = session_factory

    async def get_details(self, appointment_id: uuid.UUID) -> Optional[AppointmentDetails]:
        """Load an appointment with its related rows.

        Returns:
            AppointmentDetails, or None if the appointment or any related
            row is missing
        """
        stmt = (
            select(Appointment)
            .options(
                selectinload(Appointment.customer),
                selectinload(Appointment.provider),
                selectinload(Appointment.service),
            )
            .where(Appointment.id == appointment_id)
        )
        async with self._session() as db:
            result = await db.execute(stmt)
            appointment = result.scalar_one_or_none()

            if appointment is None:
                return None
            if appointment.customer is None or appointment.provider is None or appointment.service is None:
                logger.warning(f"Appointment {appointment_id} has missing related rows")
                return None
            return AppointmentDetails.from_model(appointment)

    async def created_since(self, since: datetime) -> list[AppointmentRef]:
        """Appointments created at or after ``since``, oldest first."""
        stmt = (
            select(Appointment)
            .where(Appointment.created_at >= since)
            .order_by(Appointment.created_at.asc())
        )
        async with self._session() as db:
            result = await db.execute(stmt)
            return [_ref(a) for a in result.scalars().all()]

    async def cancelled_since(self, since: datetime) -> list[AppointmentRef]:
        """Cancelled appointments updated at or after ``since``."""
        stmt = (
            select(Appointment)
            .where(
                Appointment.status == AppointmentStatus.CANCELLED,
                Appointment.updated_at >= since,
            )
            .order_by(Appointment.updated_at.asc())
        )
        async with self._session() as db:
            result = await db.execute(stmt)
            return [_ref(a) for a in result.scalars().all()]

    async def scheduled_between(
        self,
        start: datetime,
        end: datetime,
        statuses: Iterable[AppointmentStatus],
    ) -> list[AppointmentRef]:
        """Appointments scheduled in [start, end] with one of ``statuses``."""
        stmt = (
            select(Appointment)
            .where(
                Appointment.scheduled_at >= start,
                Appointment.scheduled_at <= end,
                Appointment.status.in_(list(statuses)),
            )
            .order_by(Appointment.scheduled_at.asc())
        )
        async with self._session() as db:
            result = await db.execute(stmt)
            return [_ref(a) for a in result.scalars().all()]


class NotificationRepository:
    """
    Notification records keyed by (appointment_id, kind).

    insert_if_absent relies on the database unique constraint and reports a
    lost race as False instead of raising.
    """

    def __init__(self, session_factory: SessionFactory = get_db_context):
        self._session = session_factory

    async def find_by_appointment_and_kind(
        self,
        appointment_id: uuid.UUID,
        kind: NotificationKind,
    ) -> Optional[NotificationRecord]:
        """Get the record for an (appointment, kind) pair, if any."""
        stmt = select(NotificationRecord).where(
            NotificationRecord.appointment_id == appointment_id,
            NotificationRecord.kind == kind,
        )
        async with self._session() as db:
            result = await db.execute(stmt)
            return result.scalar_one_or_none()

    async def insert_if_absent(
        self,
        appointment_id: uuid.UUID,
        kind: NotificationKind,
        normalized_phone: str,
        rendered_body: str,
        status: DeliveryStatus,
        sent_at: Optional[datetime] = None,
    ) -> bool:
        """Insert a record unless one exists for (appointment_id, kind).

        Returns:
            True if inserted, False on a uniqueness violation

        Raises:
            IntegrityError: For any other integrity failure
        """
        record = NotificationRecord(
            appointment_id=appointment_id,
            kind=kind,
            normalized_phone=normalized_phone,
            rendered_body=rendered_body,
            delivery_status=status,
            sent_at=sent_at,
        )
        try:
            async with self._session() as db:
                db.add(record)
                await db.flush()
        except IntegrityError as e:
            if is_unique_violation(e):
                logger.info(
                    f"Notification {kind.value} for {appointment_id} already recorded"
                )
                return False
            raise
        return True

    async def update_status(
        self,
        appointment_id: uuid.UUID,
        kind: NotificationKind,
        status: DeliveryStatus,
        sent_at: Optional[datetime] = None,
    ) -> None:
        """Record the final delivery outcome."""
        stmt = (
            update(NotificationRecord)
            .where(
                NotificationRecord.appointment_id == appointment_id,
                NotificationRecord.kind == kind,
            )
            .values(delivery_status=status, sent_at=sent_at)
        )
        async with self._session() as db:
            await db.execute(stmt)
