"""
Unit tests for retry backoff and template composition.
"""

from datetime import UTC, datetime, timedelta

import pytest

from clinic_dispatch.domains.messaging.application.services import (
    TemplateBuilder,
    backoff_delay,
    compute_next_retry_at,
)
from tests.utils.factories import make_appointment


@pytest.mark.unit
@pytest.mark.parametrize("attempt,seconds", [(1, 90), (2, 180), (3, 360)])
def test_backoff_doubles_per_attempt(attempt, seconds):
    assert backoff_delay(attempt, 90) == timedelta(seconds=seconds)


@pytest.mark.unit
def test_next_retry_at_is_relative_to_now():
    now = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)

    assert compute_next_retry_at(2, 90, now) == now + timedelta(seconds=180)


@pytest.mark.unit
class TestTemplateBuilder:
    @pytest.fixture
    def builder(self):
        return TemplateBuilder(timezone_name="America/Sao_Paulo", contact_phone="(34) 3199-3069")

    def test_body_parameters_in_clinic_time(self, builder):
        # 17:00 UTC is 14:00 in Sao Paulo
        appointment = make_appointment(scheduled_at=datetime(2026, 10, 20, 17, 0, tzinfo=UTC))

        assert builder.body_parameters(appointment) == ["Maria Souza", "20/10/2026", "14:00", "Consulta"]

    def test_missing_fields_use_defaults(self, builder):
        appointment = make_appointment(patient_name="  ", procedure=None)

        name, _, _, procedure = builder.body_parameters(appointment)

        assert name == "Paciente"
        assert procedure == "Procedimento"

    def test_button_payloads_embed_appointment_id(self, builder):
        assert builder.button_payloads(42) == ["confirm_42", "cancel_42"]

    def test_confirmation_ack_mentions_date_and_contact(self, builder):
        text = builder.confirmation_ack(make_appointment(scheduled_at=datetime(2026, 10, 20, 17, 0, tzinfo=UTC)))

        assert "20/10/2026" in text
        assert "14:00" in text
        assert "(34) 3199-3069" in text

    def test_generic_confirmation_ack(self, builder):
        assert "confirmação foi recebida" in builder.confirmation_ack(None)

    def test_cancellation_ack(self, builder):
        assert "cancelamento" in builder.cancellation_ack(None)
