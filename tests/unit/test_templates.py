"""Tests for message templates."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from notifier.core.notifications.templates import BusinessInfo, MessageTemplates, format_price
from notifier.infra.repositories import AppointmentDetails
from notifier.models.database import AppointmentStatus, NotificationKind


@pytest.fixture
def templates():
    return MessageTemplates(
        BusinessInfo(
            name="Mr.Borges",
            address="Avenida Dom Severino 1524\nTeresina - PI",
            contact_phone="(86) 94061-106",
            booking_url="https://mrborges.com.br",
            timezone="America/Sao_Paulo",
        )
    )


@pytest.fixture
def details():
    # 17:30 UTC is 14:30 in São Paulo
    return AppointmentDetails(
        id=uuid.uuid4(),
        scheduled_at=datetime(2024, 3, 8, 17, 30, tzinfo=timezone.utc),
        status=AppointmentStatus.CONFIRMED,
        customer_name="Maria",
        customer_phone="(86) 99805-3279",
        provider_name="Carlos",
        service_name="Corte + Barba",
        service_price=Decimal("55.00"),
        notes="Chegar cedo",
    )


class TestFormatPrice:
    """Test price formatting."""

    def test_decimal_comma(self):
        assert format_price(Decimal("35")) == "R$ 35,00"

    def test_cents(self):
        assert format_price(Decimal("42.5")) == "R$ 42,50"

    def test_missing_price(self):
        assert format_price(None) == "a combinar"


class TestMessageTemplates:
    """Test rendered messages."""

    def test_confirmation(self, templates, details):
        text = templates.render(NotificationKind.CONFIRMATION, details)

        assert "Agendamento Confirmado" in text
        assert "*Maria*" in text
        assert "Carlos" in text
        assert "Corte + Barba" in text
        assert "R$ 55,00" in text
        assert "08 de março às 14:30" in text
        assert "Chegar cedo" in text
        assert "Avenida Dom Severino 1524" in text

    def test_confirmation_without_notes(self, templates, details):
        details.notes = None

        text = templates.confirmation(details)

        assert "Observações" not in text

    def test_reminder_uses_local_time(self, templates, details):
        text = templates.render(NotificationKind.REMINDER, details)

        assert "Lembrete" in text
        assert "*14:30h*" in text
        assert "08/03" in text

    def test_cancellation(self, templates, details):
        text = templates.render(NotificationKind.CANCELLATION, details)

        assert "Agendamento Cancelado" in text
        assert "08 de março às 14:30" in text
        assert "https://mrborges.com.br" in text

    def test_custom(self, templates):
        text = templates.custom("Maria", "Fechados no feriado.")

        assert text.startswith("Olá, *Maria*!")
        assert "Fechados no feriado." in text
        assert text.endswith("*Mr.Borges* 💈")

    def test_render_is_deterministic(self, templates, details):
        assert templates.render(NotificationKind.CONFIRMATION, details) == templates.render(
            NotificationKind.CONFIRMATION, details
        )
