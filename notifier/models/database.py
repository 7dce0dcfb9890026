"""
Database Models

SQLAlchemy ORM models for the appointment notifier.

Customers, providers, services and appointments are owned by the booking
site and only read here. NotificationRecord is owned by this service and is
the single synchronization point between the detection paths.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import (
    DateTime, ForeignKey, Index, Numeric, String, Text, UniqueConstraint,
    Uuid, Enum as SQLEnum, text
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    """Persist enum values (not member names) so external writers agree."""
    return [member.value for member in enum_cls]


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=func.now(),
        nullable=False
    )


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class NotificationKind(str, Enum):
    """Kinds of customer notification."""
    CONFIRMATION = "confirmation"
    REMINDER = "reminder"
    CANCELLATION = "cancellation"


class DeliveryStatus(str, Enum):
    """Delivery outcome of a notification record."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class Customer(Base, TimestampMixin):
    """Customer who books appointments."""

    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    appointments: Mapped[List["Appointment"]] = relationship(
        "Appointment",
        back_populates="customer"
    )

    def __repr__(self) -> str:
        return f"<Customer(id={self.id}, name='{self.name}', phone='{self.phone}')>"


class Provider(Base, TimestampMixin):
    """Professional who performs the service (barber)."""

    __tablename__ = "providers"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    appointments: Mapped[List["Appointment"]] = relationship(
        "Appointment",
        back_populates="provider"
    )

    def __repr__(self) -> str:
        return f"<Provider(id={self.id}, name='{self.name}')>"


class Service(Base, TimestampMixin):
    """Bookable service with its price."""

    __tablename__ = "services"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    appointments: Mapped[List["Appointment"]] = relationship(
        "Appointment",
        back_populates="service"
    )

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, name='{self.name}', price={self.price})>"


class Appointment(Base, TimestampMixin):
    """
    Appointment model.

    Written by the booking site; this service only reads it.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointment_created", "created_at"),
        Index("idx_appointment_status_updated", "status", "updated_at"),
        Index("idx_appointment_scheduled", "scheduled_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("providers.id", ondelete="RESTRICT"),
        nullable=False
    )
    service_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("services.id", ondelete="RESTRICT"),
        nullable=False
    )
    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False
    )
    status: Mapped[AppointmentStatus] = mapped_column(
        SQLEnum(
            AppointmentStatus,
            name="appointment_status",
            values_callable=_enum_values,
        ),
        default=AppointmentStatus.PENDING,
        nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    customer: Mapped["Customer"] = relationship("Customer", back_populates="appointments")
    provider: Mapped["Provider"] = relationship("Provider", back_populates="appointments")
    service: Mapped["Service"] = relationship("Service", back_populates="appointments")
    notifications: Mapped[List["NotificationRecord"]] = relationship(
        "NotificationRecord",
        back_populates="appointment"
    )

    def __repr__(self) -> str:
        return (
            f"<Appointment(id={self.id}, customer_id={self.customer_id}, "
            f"scheduled_at={self.scheduled_at}, status={self.status.value})>"
        )


class NotificationRecord(Base):
    """
    Notification audit and dedup record.

    The (appointment_id, kind) pair is unique at the database level: push
    and poll detection may race to create the same record and the
    constraint decides the winner.
    """

    __tablename__ = "notification_records"
    __table_args__ = (
        UniqueConstraint(
            "appointment_id", "kind", name="uq_notification_appointment_kind"
        ),
        Index("idx_notification_status", "delivery_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False
    )
    kind: Mapped[NotificationKind] = mapped_column(
        SQLEnum(
            NotificationKind,
            name="notification_kind",
            values_callable=_enum_values,
        ),
        nullable=False
    )
    normalized_phone: Mapped[str] = mapped_column(String(32), nullable=False)
    rendered_body: Mapped[str] = mapped_column(Text, nullable=False)
    delivery_status: Mapped[DeliveryStatus] = mapped_column(
        SQLEnum(
            DeliveryStatus,
            name="delivery_status",
            values_callable=_enum_values,
        ),
        default=DeliveryStatus.PENDING,
        nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    appointment: Mapped["Appointment"] = relationship(
        "Appointment",
        back_populates="notifications"
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationRecord(appointment_id={self.appointment_id}, "
            f"kind={self.kind.value}, status={self.delivery_status.value})>"
        )
