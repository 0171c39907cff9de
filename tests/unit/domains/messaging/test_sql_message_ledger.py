"""
Integration tests for SqlMessageLedger on SQLite.

Covers idempotent upserts, monotonic retry counts, receipt ordering and
the queries used by the schedulers and the conversation views.
"""

from datetime import UTC, datetime, timedelta

import pytest

from clinic_dispatch.domains.messaging.domain import Direction, LedgerEntry, MessageKind, MessageStatus


def _sent_template(provider_message_id: str | None = "wamid.1", appointment_id: int = 42, **kwargs) -> LedgerEntry:
    defaults = {
        "kind": MessageKind.TEMPLATE,
        "status": MessageStatus.SENT,
        "appointment_id": appointment_id,
        "phone": "+5511999990000",
        "phone_key": "5511999990000",
        "provider_message_id": provider_message_id,
        "template_name": "confirmacao_personalizada",
    }
    return LedgerEntry(**{**defaults, **kwargs})


@pytest.mark.integration
@pytest.mark.asyncio
class TestRecordOutbound:
    async def test_same_provider_id_updates_in_place(self, ledger):
        first = await ledger.record_outbound(_sent_template())
        second = await ledger.record_outbound(_sent_template(status=MessageStatus.DELIVERED, template_name=None))

        assert second.id == first.id
        assert second.status is MessageStatus.DELIVERED
        assert second.template_name == "confirmacao_personalizada"
        assert len(await ledger.find_recent()) == 1

    async def test_late_sent_write_keeps_earlier_receipt(self, ledger):
        await ledger.apply_status_update("wamid.1", MessageStatus.DELIVERED)

        entry = await ledger.record_outbound(_sent_template())

        assert entry.status is MessageStatus.DELIVERED
        assert entry.kind is MessageKind.TEMPLATE
        assert entry.appointment_id == 42

    async def test_failure_overrides_receipt(self, ledger):
        await ledger.record_outbound(_sent_template(status=MessageStatus.READ))

        entry = await ledger.record_outbound(_sent_template(status=MessageStatus.FAILED, error_detail="{}"))

        assert entry.status is MessageStatus.FAILED

    async def test_retry_count_never_decreases(self, ledger):
        await ledger.record_outbound(_sent_template(status=MessageStatus.FAILED, retry_count=2))
        entry = await ledger.record_outbound(_sent_template(status=MessageStatus.SENT, retry_count=0))

        assert entry.retry_count == 2

    async def test_terminal_status_clears_next_retry_at(self, ledger):
        entry = await ledger.record_outbound(
            _sent_template(next_retry_at=datetime.now(UTC) + timedelta(minutes=5))
        )

        assert entry.next_retry_at is None

    async def test_entries_without_provider_id_are_separate_rows(self, ledger):
        await ledger.record_outbound(_sent_template(provider_message_id=None, status=MessageStatus.FAILED))
        await ledger.record_outbound(_sent_template(provider_message_id=None, status=MessageStatus.FAILED))

        assert len(await ledger.find_recent()) == 2

    async def test_body_is_truncated(self, ledger):
        entry = await ledger.record_outbound(_sent_template(kind=MessageKind.TEXT, body="x" * 5000))

        assert len(entry.body) == 1000

    async def test_status_row_takes_real_kind_when_send_is_recorded(self, ledger):
        await ledger.apply_status_update("wamid.1", MessageStatus.DELIVERED)
        entry = await ledger.record_outbound(_sent_template())

        assert entry.kind is MessageKind.TEMPLATE
        assert entry.appointment_id == 42


@pytest.mark.integration
@pytest.mark.asyncio
class TestRecordInbound:
    async def test_first_claim_creates(self, ledger):
        write = await ledger.record_inbound(
            kind=MessageKind.CONFIRMATION,
            status=MessageStatus.CONFIRMED,
            phone_key="5511999990000",
            appointment_id=42,
            provider_event_id="wamid.in.1",
            body="OK",
        )

        assert write.created
        assert write.entry.direction is Direction.INBOUND
        assert write.entry.status is MessageStatus.CONFIRMED

    async def test_replay_keeps_first_classification(self, ledger):
        await ledger.record_inbound(
            kind=MessageKind.CONFIRMATION,
            status=MessageStatus.CONFIRMED,
            phone_key="5511999990000",
            provider_event_id="wamid.in.1",
        )
        replay = await ledger.record_inbound(
            kind=MessageKind.CANCELLATION,
            status=MessageStatus.CANCELLED,
            phone_key="5511999990000",
            appointment_id=42,
            provider_event_id="wamid.in.1",
            body="OK",
        )

        assert not replay.created
        assert replay.entry.kind is MessageKind.CONFIRMATION
        assert replay.entry.status is MessageStatus.CONFIRMED
        assert replay.entry.appointment_id == 42
        assert replay.entry.body == "OK"


@pytest.mark.integration
@pytest.mark.asyncio
class TestUpdateEntry:
    async def test_update_keeps_retry_count_monotonic(self, ledger):
        entry = await ledger.record_outbound(_sent_template(provider_message_id=None, status=MessageStatus.FAILED))
        await ledger.update_entry(entry.id, retry_count=3)
        updated = await ledger.update_entry(entry.id, retry_count=1, status=MessageStatus.RETRYING)

        assert updated.retry_count == 3
        assert updated.status is MessageStatus.RETRYING

    async def test_unknown_field_rejected(self, ledger):
        entry = await ledger.record_outbound(_sent_template())

        with pytest.raises(ValueError):
            await ledger.update_entry(entry.id, colour="blue")

    async def test_missing_entry_returns_none(self, ledger):
        assert await ledger.update_entry(999, status=MessageStatus.SENT) is None


@pytest.mark.integration
@pytest.mark.asyncio
class TestApplyStatusUpdate:
    async def test_receipts_advance(self, ledger):
        await ledger.record_outbound(_sent_template())

        await ledger.apply_status_update("wamid.1", MessageStatus.DELIVERED)
        entry = await ledger.apply_status_update("wamid.1", MessageStatus.READ)

        assert entry.status is MessageStatus.READ

    async def test_receipts_never_regress(self, ledger):
        await ledger.record_outbound(_sent_template())
        await ledger.apply_status_update("wamid.1", MessageStatus.READ)

        entry = await ledger.apply_status_update("wamid.1", MessageStatus.DELIVERED)

        assert entry.status is MessageStatus.READ

    async def test_failed_always_applies(self, ledger):
        await ledger.record_outbound(_sent_template())
        await ledger.apply_status_update("wamid.1", MessageStatus.READ)

        entry = await ledger.apply_status_update("wamid.1", MessageStatus.FAILED, '[{"code": 131026}]')

        assert entry.status is MessageStatus.FAILED
        assert "131026" in entry.error_detail

    async def test_unknown_id_inserts_status_row(self, ledger):
        entry = await ledger.apply_status_update("wamid.unknown", MessageStatus.DELIVERED)

        assert entry.kind is MessageKind.STATUS
        assert entry.provider_message_id == "wamid.unknown"


@pytest.mark.integration
@pytest.mark.asyncio
class TestQueries:
    async def test_find_for_retry_respects_cap_and_schedule(self, ledger):
        now = datetime.now(UTC)
        due = await ledger.record_outbound(_sent_template("wamid.a", status=MessageStatus.FAILED, retry_count=1))
        await ledger.record_outbound(_sent_template("wamid.b", status=MessageStatus.FAILED, retry_count=3))
        await ledger.record_outbound(
            _sent_template("wamid.c", status=MessageStatus.FAILED, next_retry_at=now + timedelta(minutes=10))
        )
        await ledger.record_outbound(_sent_template("wamid.d", status=MessageStatus.SENT))

        entries = await ledger.find_for_retry(
            [MessageKind.TEMPLATE], [MessageStatus.FAILED], max_retry_count=3, limit=10, now=now
        )

        assert [e.id for e in entries] == [due.id]

    async def test_find_for_retry_skips_permanent_failures(self, ledger):
        await ledger.record_outbound(_sent_template(None, status=MessageStatus.FAILED, retryable=False))
        transient = await ledger.record_outbound(_sent_template(None, status=MessageStatus.FAILED))

        entries = await ledger.find_for_retry(
            [MessageKind.TEMPLATE], [MessageStatus.FAILED, MessageStatus.ERROR], max_retry_count=3, limit=10
        )

        assert [e.id for e in entries] == [transient.id]
        assert entries[0].retryable is True

    async def test_has_entries_between(self, ledger):
        now = datetime.now(UTC)
        await ledger.record_outbound(_sent_template())

        assert await ledger.has_entries_between(
            MessageKind.TEMPLATE, [MessageStatus.SENT], now - timedelta(hours=1), now + timedelta(hours=1)
        )
        assert not await ledger.has_entries_between(
            MessageKind.REMINDER, [MessageStatus.SENT], now - timedelta(hours=1), now + timedelta(hours=1)
        )

    async def test_latest_statuses_for(self, ledger):
        await ledger.record_outbound(_sent_template("wamid.1", appointment_id=1, status=MessageStatus.FAILED))
        await ledger.record_outbound(_sent_template("wamid.2", appointment_id=1, status=MessageStatus.SENT))
        await ledger.record_outbound(_sent_template("wamid.3", appointment_id=2, status=MessageStatus.FAILED))

        latest = await ledger.latest_statuses_for([1, 2, 3])

        assert latest[1].provider_message_id == "wamid.2"
        assert latest[2].status is MessageStatus.FAILED
        assert 3 not in latest

    async def test_appointments_with_successful(self, ledger):
        await ledger.record_outbound(_sent_template("wamid.1", appointment_id=1))
        await ledger.record_outbound(_sent_template("wamid.2", appointment_id=2, status=MessageStatus.FAILED))

        assert await ledger.appointments_with_successful(MessageKind.TEMPLATE, [1, 2, 3]) == {1}
        assert await ledger.appointments_with_attempts(MessageKind.TEMPLATE, [1, 2, 3]) == {1, 2}

    async def test_conversations_grouped_by_phone_key(self, ledger):
        await ledger.record_outbound(_sent_template("wamid.1"))
        await ledger.record_inbound(
            kind=MessageKind.TEXT,
            status=MessageStatus.RECEIVED,
            phone_key="5511999990000",
            provider_event_id="wamid.in.1",
            body="Oi",
        )
        await ledger.record_outbound(
            _sent_template("wamid.2", appointment_id=7, phone="+5534991234567", phone_key="5534991234567")
        )

        sessions = await ledger.list_conversations()
        by_key = {s.phone_key: s for s in sessions}

        assert set(by_key) == {"5511999990000", "5534991234567"}
        assert by_key["5511999990000"].message_count == 2
        assert by_key["5511999990000"].last_inbound_at is not None
        assert by_key["5534991234567"].last_inbound_at is None

        messages = await ledger.conversation_messages("5511999990000")
        assert [m.provider_message_id for m in messages] == ["wamid.1", "wamid.in.1"]
        assert await ledger.latest_appointment_id_for_phone("5511999990000") == 42
