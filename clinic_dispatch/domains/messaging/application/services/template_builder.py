# ============================================================================
# SCOPE: APPLICATION LAYER (Messaging)
# Description: Template parameters and acknowledgement texts.
# ============================================================================
"""Template Builder.

Renders appointment fields in the clinic time zone for template body
parameters and acknowledgement replies.
"""

from datetime import UTC, datetime

from pytz import timezone

from ...domain import Appointment

DEFAULT_BODY_VALUES = ("Paciente", "Data", "Hora", "Procedimento")

CONFIRM_PAYLOAD_PREFIX = "confirm"
CANCEL_PAYLOAD_PREFIX = "cancel"


class TemplateBuilder:
    """Builds template parameters and reply texts for an appointment."""

    def __init__(self, timezone_name: str = "America/Sao_Paulo", contact_phone: str = "") -> None:
        self.tz = timezone(timezone_name)
        self.contact_phone = contact_phone

    def localize(self, when: datetime) -> datetime:
        if when.tzinfo is None:
            when = when.replace(tzinfo=UTC)
        return when.astimezone(self.tz)

    def format_date(self, when: datetime) -> str:
        return self.localize(when).strftime("%d/%m/%Y")

    def format_time(self, when: datetime) -> str:
        return self.localize(when).strftime("%H:%M")

    def body_parameters(self, appointment: Appointment | None) -> list[str]:
        """Patient name, date, time and procedure, with placeholders for gaps."""
        if appointment is None:
            return list(DEFAULT_BODY_VALUES)

        values = [
            appointment.patient_name,
            self.format_date(appointment.scheduled_at) if appointment.scheduled_at else None,
            self.format_time(appointment.scheduled_at) if appointment.scheduled_at else None,
            appointment.procedure,
        ]
        return [
            value.strip() if value and value.strip() else default
            for value, default in zip(values, DEFAULT_BODY_VALUES, strict=True)
        ]

    @staticmethod
    def button_payloads(appointment_id: int) -> list[str]:
        """Quick-reply payloads embedding the appointment id."""
        return [
            f"{CONFIRM_PAYLOAD_PREFIX}_{appointment_id}",
            f"{CANCEL_PAYLOAD_PREFIX}_{appointment_id}",
        ]

    def fallback_text(self, appointment: Appointment) -> str:
        """Free-text version of the confirmation request."""
        name, date, time, procedure = self.body_parameters(appointment)
        return (
            f"Olá, {name}! Confirmamos seu agendamento de {procedure} em {date} às {time}? "
            "Responda SIM para confirmar ou NÃO para desmarcar."
        )

    def confirmation_ack(self, appointment: Appointment | None) -> str:
        if appointment is None:
            return "✅ Obrigado! Sua confirmação foi recebida."
        text = (
            f"✅ Obrigado! Seu agendamento para {self.format_date(appointment.scheduled_at)} "
            f"às {self.format_time(appointment.scheduled_at)} está confirmado."
        )
        if self.contact_phone:
            text += f"\nQualquer dúvida, estamos à disposição no {self.contact_phone}."
        return text

    def cancellation_ack(self, appointment: Appointment | None) -> str:
        text = "Recebemos seu pedido de cancelamento."
        if self.contact_phone:
            text += f" Para reagendar, por favor entre em contato pelo {self.contact_phone}."
        return text
