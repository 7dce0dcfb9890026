"""
Message templates.

Renders the customer-facing WhatsApp texts (pt-BR). Times are stored in UTC
and shown in the business timezone.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from notifier.config import get_settings
from notifier.infra.repositories import AppointmentDetails
from notifier.models.database import NotificationKind

logger = logging.getLogger(__name__)

MONTHS_PT = (
    "janeiro", "fevereiro", "março", "abril", "maio", "junho",
    "julho", "agosto", "setembro", "outubro", "novembro", "dezembro",
)


@dataclass
class BusinessInfo:
    """Business details printed in every message."""

    name: str
    address: str
    contact_phone: str
    booking_url: str
    timezone: str = "America/Sao_Paulo"

    @classmethod
    def from_settings(cls) -> "BusinessInfo":
        settings = get_settings()
        return cls(
            name=settings.business_name,
            address=settings.business_address,
            contact_phone=settings.contact_phone,
            booking_url=settings.booking_url,
            timezone=settings.timezone,
        )


def format_price(price: Optional[Decimal]) -> str:
    """Format a price as Brazilian reais, e.g. ``R$ 35,00``."""
    if price is None:
        return "a combinar"
    return f"R$ {price:.2f}".replace(".", ",")


class MessageTemplates:
    """Pure renderer: (kind, appointment details) -> text."""

    def __init__(self, business: Optional[BusinessInfo] = None):
        self.business = business or BusinessInfo.from_settings()
        self._tz = ZoneInfo(self.business.timezone)

    def render(self, kind: NotificationKind, details: AppointmentDetails) -> str:
        """Render the message for a notification kind."""
        if kind is NotificationKind.CONFIRMATION:
            return self.confirmation(details)
        if kind is NotificationKind.REMINDER:
            return self.reminder(details)
        return self.cancellation(details)

    def _local(self, moment: datetime) -> datetime:
        return moment.astimezone(self._tz)

    def _long_date(self, moment: datetime) -> str:
        local = self._local(moment)
        return f"{local.day:02d} de {MONTHS_PT[local.month - 1]} às {local:%H:%M}"

    def confirmation(self, details: AppointmentDetails) -> str:
        lines = [
            "🎉 *Agendamento Confirmado!*",
            "",
            f"Olá, *{details.customer_name}*!",
            "",
            "Seu agendamento foi confirmado com sucesso:",
            "",
            f"👨‍💼 *Barbeiro:* {details.provider_name}",
            f"✂️ *Serviço:* {details.service_name}",
            f"💰 *Valor:* {format_price(details.service_price)}",
            f"📅 *Data:* {self._long_date(details.scheduled_at)}",
        ]
        if details.notes:
            lines.append(f"📝 *Observações:* {details.notes}")
        lines += [
            "",
            "📍 *Endereço:*",
            self.business.address,
            "",
            "⏰ Por favor, chegue com 5 minutos de antecedência.",
            "",
            "Precisa reagendar? Entre em contato:",
            f"📱 {self.business.contact_phone}",
            "",
            "Nos vemos em breve! 💈",
            f"*{self.business.name}*",
        ]
        return "\n".join(lines)

    def reminder(self, details: AppointmentDetails) -> str:
        local = self._local(details.scheduled_at)
        hour = f"{local:%H:%M}"
        return "\n".join([
            "⏰ *Lembrete: Seu horário está chegando!*",
            "",
            f"Olá, *{details.customer_name}*! 👋",
            "",
            f"Seu agendamento é *HOJE* às *{hour}h*!",
            "",
            "📋 *Detalhes:*",
            f"👨‍💼 Barbeiro: {details.provider_name}",
            f"✂️ Serviço: {details.service_name}",
            f"📅 Data: {local:%d/%m}",
            f"🕐 Horário: {hour}h",
            "",
            "📍 *Endereço:*",
            self.business.address,
            "",
            "❌ Não poderá comparecer?",
            f"Avise-nos: {self.business.contact_phone}",
            "",
            "Estamos te esperando! 💈✨",
            f"*{self.business.name}*",
        ])

    def cancellation(self, details: AppointmentDetails) -> str:
        return "\n".join([
            "❌ *Agendamento Cancelado*",
            "",
            f"Olá, *{details.customer_name}*,",
            "",
            "Seu agendamento foi cancelado:",
            "",
            f"👨‍💼 *Barbeiro:* {details.provider_name}",
            f"✂️ *Serviço:* {details.service_name}",
            f"📅 *Data:* {self._long_date(details.scheduled_at)}",
            "",
            "Se deseja reagendar, entre em contato:",
            f"📱 {self.business.contact_phone}",
            "",
            "Ou agende online:",
            f"🌐 {self.business.booking_url}",
            "",
            f"*{self.business.name}*",
        ])

    def custom(self, customer_name: str, text: str) -> str:
        """Wrap an operator message with greeting and signature."""
        return f"Olá, *{customer_name}*!\n\n{text}\n\n*{self.business.name}* 💈"
