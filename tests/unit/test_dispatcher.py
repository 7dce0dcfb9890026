"""Tests for the notification dispatcher."""

import asyncio
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy.exc import OperationalError

from notifier.core.errors import DeliveryFailedError, ErrorKind, NotConnectedError
from notifier.core.notifications import (
    AppointmentCancelled,
    AppointmentCreated,
    BusinessInfo,
    MessageTemplates,
    NotificationDispatcher,
    ReminderDue,
)
from notifier.infra.repositories import AppointmentDetails
from notifier.models.database import AppointmentStatus, DeliveryStatus, NotificationKind

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeSender:
    """Records sends; can be disconnected, slow or failing."""

    def __init__(self):
        self.connected = True
        self.sent: list[tuple[str, str]] = []
        self.images: list[tuple[str, str, Optional[str]]] = []
        self.error: Optional[Exception] = None
        self.delay = 0.0

    def is_connected(self) -> bool:
        return self.connected

    async def send(self, address: str, content: str) -> None:
        if not self.connected:
            raise NotConnectedError("not connected")
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        self.sent.append((address, content))

    async def send_image(self, address: str, image_url: str, caption: Optional[str] = None) -> None:
        if not self.connected:
            raise NotConnectedError("not connected")
        if self.error:
            raise self.error
        self.images.append((address, image_url, caption))


class FakeAppointments:
    def __init__(self):
        self.details: dict[uuid.UUID, AppointmentDetails] = {}

    async def get_details(self, appointment_id):
        return self.details.get(appointment_id)


class FakeNotifications:
    """In-memory store enforcing uniqueness on (appointment_id, kind)."""

    def __init__(self):
        self.records: dict[tuple, dict] = {}
        self.find_calls = 0

    async def find_by_appointment_and_kind(self, appointment_id, kind):
        self.find_calls += 1
        return self.records.get((appointment_id, kind))

    async def insert_if_absent(
        self, appointment_id, kind, normalized_phone, rendered_body, status, sent_at=None
    ):
        key = (appointment_id, kind)
        if key in self.records:
            return False
        self.records[key] = {
            "normalized_phone": normalized_phone,
            "rendered_body": rendered_body,
            "delivery_status": status,
            "sent_at": sent_at,
        }
        return True

    async def update_status(self, appointment_id, kind, status, sent_at=None):
        record = self.records[(appointment_id, kind)]
        record["delivery_status"] = status
        record["sent_at"] = sent_at


class SkippingLookupNotifications(FakeNotifications):
    """Store whose pre-check always misses, as when two paths race."""

    async def find_by_appointment_and_kind(self, appointment_id, kind):
        self.find_calls += 1
        return None


def make_details(appointment_id, phone: Optional[str] = "(86) 99805-3279") -> AppointmentDetails:
    return AppointmentDetails(
        id=appointment_id,
        scheduled_at=datetime(2024, 5, 1, 17, 30, tzinfo=timezone.utc),
        status=AppointmentStatus.PENDING,
        customer_name="João",
        customer_phone=phone,
        provider_name="Carlos",
        service_name="Corte",
        service_price=Decimal("35.00"),
    )


@pytest.fixture
def templates():
    return MessageTemplates(
        BusinessInfo(
            name="Mr.Borges",
            address="Avenida Dom Severino 1524",
            contact_phone="(86) 94061-106",
            booking_url="https://mrborges.com.br",
        )
    )


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def appointments():
    return FakeAppointments()


@pytest.fixture
def notifications():
    return FakeNotifications()


@pytest.fixture
def appointment_id(appointments):
    appointment_id = uuid.uuid4()
    appointments.details[appointment_id] = make_details(appointment_id)
    return appointment_id


@pytest.fixture
def dispatcher(sender, appointments, notifications, templates):
    return NotificationDispatcher(
        sender,
        appointments=appointments,
        notifications=notifications,
        templates=templates,
        country_prefix="55",
        address_suffix="@s.whatsapp.net",
        clock=lambda: FIXED_NOW,
    )


class TestConfirmation:
    """Test send-then-record notifications."""

    @pytest.mark.asyncio
    async def test_confirmation_sent_and_recorded(
        self, dispatcher, sender, notifications, appointment_id
    ):
        """Test the booking scenario end to end."""
        result = await dispatcher.handle(AppointmentCreated(appointment_id))

        assert result.delivered is True
        assert result.reason is None
        assert len(sender.sent) == 1
        address, body = sender.sent[0]
        assert address == "558698053279@s.whatsapp.net"
        assert "João" in body

        record = notifications.records[(appointment_id, NotificationKind.CONFIRMATION)]
        assert record["delivery_status"] == DeliveryStatus.SENT
        assert record["normalized_phone"] == "558698053279"
        assert record["sent_at"] == FIXED_NOW
        assert record["rendered_body"] == body

    @pytest.mark.asyncio
    async def test_second_handle_does_not_resend(self, dispatcher, sender, appointment_id):
        """Test handling the same event twice sends once."""
        first = await dispatcher.handle(AppointmentCreated(appointment_id))
        second = await dispatcher.handle(AppointmentCreated(appointment_id))

        assert first.delivered and second.delivered
        assert second.reason == ErrorKind.ALREADY_NOTIFIED
        assert len(sender.sent) == 1

    @pytest.mark.asyncio
    async def test_lost_insert_race_is_benign(
        self, sender, appointments, templates, appointment_id
    ):
        """Test a uniqueness violation after sending is reported as a race."""
        store = SkippingLookupNotifications()
        dispatcher = NotificationDispatcher(
            sender,
            appointments=appointments,
            notifications=store,
            templates=templates,
            country_prefix="55",
            address_suffix="@s.whatsapp.net",
        )

        await dispatcher.handle(AppointmentCreated(appointment_id))
        result = await dispatcher.handle(AppointmentCreated(appointment_id))

        assert result.delivered is True
        assert result.reason == ErrorKind.UNIQUENESS_RACE
        assert len(store.records) == 1

    @pytest.mark.asyncio
    async def test_failed_send_creates_no_record(
        self, dispatcher, sender, notifications, appointment_id
    ):
        sender.error = DeliveryFailedError("gateway refused")

        result = await dispatcher.handle(AppointmentCreated(appointment_id))

        assert result.delivered is False
        assert result.reason == ErrorKind.DELIVERY_FAILED
        assert notifications.records == {}

    @pytest.mark.asyncio
    async def test_not_connected(self, dispatcher, sender, notifications, appointment_id):
        sender.connected = False

        result = await dispatcher.handle(AppointmentCreated(appointment_id))

        assert result.delivered is False
        assert result.reason == ErrorKind.NOT_CONNECTED
        assert notifications.records == {}

    @pytest.mark.asyncio
    async def test_reminder_is_independent_of_confirmation(
        self, dispatcher, sender, notifications, appointment_id
    ):
        """Test each kind is deduplicated separately."""
        await dispatcher.handle(AppointmentCreated(appointment_id))
        result = await dispatcher.handle(ReminderDue(appointment_id))

        assert result.delivered is True
        assert result.reason is None
        assert len(sender.sent) == 2
        assert (appointment_id, NotificationKind.REMINDER) in notifications.records

    @pytest.mark.asyncio
    async def test_record_write_failure_after_send(
        self, dispatcher, sender, notifications, appointment_id
    ):
        """Test a store error after a successful send still reports delivery."""

        async def broken_insert(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("connection lost"))

        notifications.insert_if_absent = broken_insert

        result = await dispatcher.handle(AppointmentCreated(appointment_id))

        assert result.delivered is True
        assert result.reason == ErrorKind.STORE_UNAVAILABLE
        assert len(sender.sent) == 1


class TestCancellation:
    """Test claim-then-send notifications."""

    @pytest.mark.asyncio
    async def test_cancellation_sent(self, dispatcher, sender, notifications, appointment_id):
        result = await dispatcher.handle(AppointmentCancelled(appointment_id))

        assert result.delivered is True
        assert len(sender.sent) == 1
        record = notifications.records[(appointment_id, NotificationKind.CANCELLATION)]
        assert record["delivery_status"] == DeliveryStatus.SENT
        assert record["sent_at"] == FIXED_NOW

    @pytest.mark.asyncio
    async def test_losing_claim_never_sends(
        self, sender, appointments, templates, appointment_id
    ):
        """Test the path that loses the insert does not call send."""
        store = SkippingLookupNotifications()
        dispatcher = NotificationDispatcher(
            sender,
            appointments=appointments,
            notifications=store,
            templates=templates,
            country_prefix="55",
            address_suffix="@s.whatsapp.net",
        )
        await store.insert_if_absent(
            appointment_id,
            NotificationKind.CANCELLATION,
            "558698053279",
            "claimed elsewhere",
            DeliveryStatus.PENDING,
        )

        result = await dispatcher.handle(AppointmentCancelled(appointment_id))

        assert result.delivered is True
        assert result.reason == ErrorKind.ALREADY_NOTIFIED
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_concurrent_detections_send_once(
        self, sender, appointments, templates, appointment_id
    ):
        """Test two near-simultaneous cancellations yield one record and one send."""
        store = SkippingLookupNotifications()
        sender.delay = 0.01
        dispatcher = NotificationDispatcher(
            sender,
            appointments=appointments,
            notifications=store,
            templates=templates,
            country_prefix="55",
            address_suffix="@s.whatsapp.net",
        )

        results = await asyncio.gather(
            dispatcher.handle(AppointmentCancelled(appointment_id)),
            dispatcher.handle(AppointmentCancelled(appointment_id)),
        )

        assert all(r.delivered for r in results)
        assert len(sender.sent) == 1
        assert len(store.records) == 1
        record = store.records[(appointment_id, NotificationKind.CANCELLATION)]
        assert record["delivery_status"] == DeliveryStatus.SENT

    @pytest.mark.asyncio
    async def test_failed_send_marks_record_failed(
        self, dispatcher, sender, notifications, appointment_id
    ):
        sender.error = DeliveryFailedError("timeout")

        result = await dispatcher.handle(AppointmentCancelled(appointment_id))

        assert result.delivered is False
        assert result.reason == ErrorKind.DELIVERY_FAILED
        record = notifications.records[(appointment_id, NotificationKind.CANCELLATION)]
        assert record["delivery_status"] == DeliveryStatus.FAILED

    @pytest.mark.asyncio
    async def test_failed_claim_is_terminal(
        self, dispatcher, sender, notifications, appointment_id
    ):
        """Test a failed cancellation is not retried by later detections."""
        sender.connected = False
        await dispatcher.handle(AppointmentCancelled(appointment_id))

        sender.connected = True
        result = await dispatcher.handle(AppointmentCancelled(appointment_id))

        assert result.reason == ErrorKind.ALREADY_NOTIFIED
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_mark_sent_failure_after_send(
        self, dispatcher, sender, notifications, appointment_id
    ):
        async def broken_update(*args, **kwargs):
            raise OperationalError("UPDATE", {}, Exception("connection lost"))

        notifications.update_status = broken_update

        result = await dispatcher.handle(AppointmentCancelled(appointment_id))

        assert result.delivered is True
        assert result.reason == ErrorKind.STORE_UNAVAILABLE
        assert len(sender.sent) == 1
        record = notifications.records[(appointment_id, NotificationKind.CANCELLATION)]
        assert record["delivery_status"] == DeliveryStatus.PENDING


class TestResolution:
    """Test subject and recipient resolution failures."""

    @pytest.mark.asyncio
    async def test_missing_appointment(self, dispatcher, sender):
        result = await dispatcher.handle(AppointmentCreated(uuid.uuid4()))

        assert result.delivered is False
        assert result.reason == ErrorKind.SUBJECT_NOT_FOUND
        assert sender.sent == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("phone", [None, "", "   ", "sem telefone"])
    async def test_no_phone(self, dispatcher, sender, appointments, notifications, phone):
        """Test customers without a usable phone get no message and no record."""
        appointment_id = uuid.uuid4()
        appointments.details[appointment_id] = make_details(appointment_id, phone=phone)

        result = await dispatcher.handle(AppointmentCancelled(appointment_id))

        assert result.delivered is False
        assert result.reason == ErrorKind.NO_RECIPIENT_ADDRESS
        assert sender.sent == []
        assert notifications.records == {}

    @pytest.mark.asyncio
    async def test_store_error_classified(self, dispatcher, appointments, appointment_id):
        async def broken(_):
            raise OperationalError("SELECT", {}, Exception("db down"))

        appointments.get_details = broken

        result = await dispatcher.handle(AppointmentCreated(appointment_id))

        assert result.delivered is False
        assert result.reason == ErrorKind.STORE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_unexpected_error_classified(self, dispatcher, appointments, appointment_id):
        async def broken(_):
            raise KeyError("boom")

        appointments.get_details = broken

        result = await dispatcher.handle(AppointmentCreated(appointment_id))

        assert result.delivered is False
        assert result.reason == ErrorKind.UNEXPECTED


class TestSendCustom:
    """Test operator messages."""

    @pytest.mark.asyncio
    async def test_custom_message(self, dispatcher, sender, notifications):
        result = await dispatcher.send_custom("5586998053279", "Promoção hoje!")

        assert result.delivered is True
        assert sender.sent == [("558698053279@s.whatsapp.net", "Promoção hoje!")]
        assert notifications.records == {}

    @pytest.mark.asyncio
    async def test_custom_message_without_digits(self, dispatcher, sender):
        result = await dispatcher.send_custom("n/a", "Oi")

        assert result.delivered is False
        assert result.reason == ErrorKind.NO_RECIPIENT_ADDRESS
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_custom_message_not_connected(self, dispatcher, sender):
        sender.connected = False

        result = await dispatcher.send_custom("(86) 99805-3279", "Oi")

        assert result.to_dict() == {
            "delivered": False,
            "reason": "not_connected",
            "detail": "not connected",
        }

    @pytest.mark.asyncio
    async def test_custom_message_with_greeting(self, dispatcher, sender):
        result = await dispatcher.send_custom("(86) 99805-3279", "Fechados amanhã.", "João")

        assert result.delivered is True
        _, body = sender.sent[0]
        assert body.startswith("Olá, *João*!")
        assert "Fechados amanhã." in body

    @pytest.mark.asyncio
    async def test_custom_image(self, dispatcher, sender, notifications):
        result = await dispatcher.send_custom_image(
            "(86) 99805-3279", "https://mrborges.com.br/promo.jpg", "Corte + barba"
        )

        assert result.delivered is True
        assert sender.images == [
            ("558698053279@s.whatsapp.net", "https://mrborges.com.br/promo.jpg", "Corte + barba")
        ]
        assert sender.sent == []
        assert notifications.records == {}

    @pytest.mark.asyncio
    async def test_custom_image_caption_with_greeting(self, dispatcher, sender):
        await dispatcher.send_custom_image(
            "(86) 99805-3279", "https://mrborges.com.br/promo.jpg", "Promoção hoje!", "João"
        )

        _, _, caption = sender.images[0]
        assert caption.startswith("Olá, *João*!")
        assert "Promoção hoje!" in caption

    @pytest.mark.asyncio
    async def test_custom_image_without_digits(self, dispatcher, sender):
        result = await dispatcher.send_custom_image("n/a", "https://mrborges.com.br/promo.jpg")

        assert result.reason == ErrorKind.NO_RECIPIENT_ADDRESS
        assert sender.images == []

    @pytest.mark.asyncio
    async def test_custom_image_delivery_failed(self, dispatcher, sender):
        sender.error = DeliveryFailedError("Invalid media")

        result = await dispatcher.send_custom_image("(86) 99805-3279", "https://x.test/a.jpg")

        assert result.delivered is False
        assert result.reason == ErrorKind.DELIVERY_FAILED
