"""
Integration tests for SqlAppointmentStore on SQLite.
"""

from datetime import UTC, datetime, timedelta

import pytest

from clinic_dispatch.domains.messaging.domain import LedgerEntry, MessageKind, MessageStatus
from clinic_dispatch.domains.messaging.infrastructure.persistence import AppointmentNotFoundError
from tests.utils.factories import seed_appointment


@pytest.fixture
def tomorrow() -> datetime:
    return datetime.now(UTC).replace(microsecond=0) + timedelta(days=1)


@pytest.mark.integration
@pytest.mark.asyncio
class TestPendingByPhone:
    async def test_matches_stored_contact_with_punctuation(self, store, session_factory, tomorrow):
        await seed_appointment(session_factory, 42, tomorrow, contacts="(11) 99999-0000")

        appointment = await store.get_latest_pending_by_phone("5511999990000")

        assert appointment is not None
        assert appointment.id == 42

    async def test_picks_nearest_pending(self, store, session_factory, tomorrow):
        await seed_appointment(session_factory, 1, tomorrow + timedelta(days=5))
        await seed_appointment(session_factory, 2, tomorrow)
        await seed_appointment(session_factory, 3, tomorrow - timedelta(hours=2), confirmed=True)

        appointment = await store.get_latest_pending_by_phone("+55 11 99999-0000")

        assert appointment.id == 2

    async def test_ignores_old_and_inactive(self, store, session_factory):
        now = datetime.now(UTC)
        await seed_appointment(session_factory, 1, now - timedelta(days=3))
        await seed_appointment(session_factory, 2, now + timedelta(days=1), active=False)

        assert await store.get_latest_pending_by_phone("5511999990000") is None

    async def test_other_numbers_do_not_match(self, store, session_factory, tomorrow):
        await seed_appointment(session_factory, 1, tomorrow, contacts="34 3333-1111")

        assert await store.get_latest_pending_by_phone("5511999990000") is None


@pytest.mark.integration
@pytest.mark.asyncio
class TestTransitions:
    async def test_confirm(self, store, session_factory, tomorrow):
        await seed_appointment(session_factory, 42, tomorrow)

        await store.confirm(42)

        appointment = await store.get_by_id(42)
        assert appointment.confirmed
        assert appointment.active

    async def test_cancel(self, store, session_factory, tomorrow):
        await seed_appointment(session_factory, 42, tomorrow, confirmed=True)

        await store.cancel(42, "Cancelled by patient via WhatsApp")

        appointment = await store.get_by_id(42)
        assert not appointment.active
        assert not appointment.confirmed

    async def test_missing_appointment_raises(self, store):
        with pytest.raises(AppointmentNotFoundError):
            await store.confirm(404)
        with pytest.raises(AppointmentNotFoundError):
            await store.cancel(404, "x")


@pytest.mark.integration
@pytest.mark.asyncio
class TestDueSelection:
    async def test_dispatch_excludes_already_sent(self, store, ledger, session_factory, tomorrow):
        await seed_appointment(session_factory, 1, tomorrow)
        await seed_appointment(session_factory, 2, tomorrow + timedelta(minutes=30))
        await seed_appointment(session_factory, 3, tomorrow, confirmed=True)
        await ledger.record_outbound(
            LedgerEntry(
                kind=MessageKind.TEMPLATE,
                status=MessageStatus.DELIVERED,
                appointment_id=1,
                provider_message_id="wamid.1",
            )
        )
        start, end = tomorrow - timedelta(hours=1), tomorrow + timedelta(hours=1)

        excluded = await store.list_due_for_dispatch(start, end, exclude_already_logged=True)
        plain = await store.list_due_for_dispatch(start, end, exclude_already_logged=False)

        assert [a.id for a in excluded] == [2]
        assert [a.id for a in plain] == [1, 2]

    async def test_failed_send_is_owned_by_retry_job(self, store, ledger, session_factory, tomorrow):
        await seed_appointment(session_factory, 1, tomorrow)
        await seed_appointment(session_factory, 2, tomorrow)
        await ledger.record_outbound(
            LedgerEntry(kind=MessageKind.TEMPLATE, status=MessageStatus.FAILED, appointment_id=1)
        )
        await ledger.record_outbound(
            LedgerEntry(kind=MessageKind.TEMPLATE, status=MessageStatus.DISCARDED, appointment_id=2)
        )

        due = await store.list_due_for_dispatch(tomorrow - timedelta(hours=1), tomorrow + timedelta(hours=1))

        assert [a.id for a in due] == [2]

    async def test_reminder_selection(self, store, ledger, session_factory, tomorrow):
        await seed_appointment(session_factory, 1, tomorrow, confirmed=True)
        await seed_appointment(session_factory, 2, tomorrow)
        await seed_appointment(session_factory, 3, tomorrow, active=False)
        start, end = tomorrow - timedelta(hours=1), tomorrow + timedelta(hours=1)

        everyone = await store.list_due_for_reminder(start, end)
        confirmed_only = await store.list_due_for_reminder(start, end, require_confirmed=True)

        assert [a.id for a in everyone] == [1, 2]
        assert [a.id for a in confirmed_only] == [1]
