"""
Tests for DispatchScheduler: no double dispatch, failure recording,
text fallback and the degraded candidate query.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import update

from clinic_dispatch.domains.messaging.application.ports import ChannelRejectedError, ChannelRetryableError
from clinic_dispatch.domains.messaging.application.use_cases import ProcessWebhookUseCase
from clinic_dispatch.domains.messaging.domain import LedgerEntry, MessageKind, MessageStatus
from clinic_dispatch.domains.messaging.infrastructure.scheduler import DispatchScheduler, RunState
from clinic_dispatch.models.db import MessageLog
from tests.utils.factories import build_webhook_payload, seed_appointment, text_message

TEMPLATE = "confirmacao_personalizada"


@pytest.fixture
def scheduler(ledger, store, channel, templates, session_window) -> DispatchScheduler:
    return DispatchScheduler(
        ledger=ledger,
        store=store,
        channel=channel,
        templates=templates,
        template_name=TEMPLATE,
        session_window=session_window,
        interval_seconds=60,
        send_interval_seconds=0,
    )


def tomorrow_at(scheduler: DispatchScheduler, hours: int = 15) -> datetime:
    start, _ = scheduler.day_window(1)
    return start + timedelta(hours=hours)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_dispatch_then_ok_reply_confirms(scheduler, ledger, store, channel, classifier, templates, session_factory):
    await seed_appointment(session_factory, 42, tomorrow_at(scheduler), contacts="+5511999990000")

    summary = await scheduler.run_once()

    assert summary.state is RunState.COMPLETED
    assert summary.counts["sent"] == 1
    sent = channel.templates[0]
    assert sent.phone == "+5511999990000"
    assert sent.template_name == TEMPLATE
    assert sent.button_payloads == ["confirm_42", "cancel_42"]
    entry = await ledger.find_by_provider_message_id(sent.provider_message_id)
    assert entry.kind is MessageKind.TEMPLATE
    assert entry.status is MessageStatus.SENT
    assert entry.appointment_id == 42

    resolver = ProcessWebhookUseCase(ledger, store, channel, classifier, templates)
    result = await resolver.execute(build_webhook_payload(messages=[text_message("wamid.in.1", "OK")]))

    outcome = result.data["messages"][0]
    assert outcome["action"] == "confirmed"
    assert outcome["appointment_id"] == 42
    assert (await store.get_by_id(42)).confirmed
    confirmation = await ledger.find_by_provider_message_id("wamid.in.1")
    assert confirmation.kind is MessageKind.CONFIRMATION
    assert confirmation.status is MessageStatus.CONFIRMED
    assert len(channel.texts) == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_second_run_same_day_is_skipped(scheduler, channel, session_factory):
    await seed_appointment(session_factory, 42, tomorrow_at(scheduler))
    await scheduler.run_once()

    summary = await scheduler.run_once()

    assert summary.state is RunState.SKIPPED
    assert summary.reason == "already_dispatched_today"
    assert len(channel.templates) == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_appointment_with_successful_template_is_not_selected(scheduler, ledger, channel, session_factory):
    await seed_appointment(session_factory, 42, tomorrow_at(scheduler))
    await seed_appointment(session_factory, 43, tomorrow_at(scheduler, 16), contacts="34 99123-4567")
    entry = await ledger.record_outbound(
        LedgerEntry(kind=MessageKind.TEMPLATE, status=MessageStatus.DELIVERED, appointment_id=42, provider_message_id="wamid.old")
    )
    # Sent on an earlier day, so the same-day guard does not apply
    async with session_factory() as session:
        await session.execute(
            update(MessageLog).where(MessageLog.id == entry.id).values(created_at=datetime.now(UTC) - timedelta(days=3))
        )
        await session.commit()

    summary = await scheduler.run_once()

    assert summary.counts == {"candidates": 1, "sent": 1}
    assert [m.phone for m in channel.templates] == ["+5534991234567"]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_timed_out_dedup_join_falls_back_to_plain_query(scheduler, ledger, store, channel, session_factory):
    await seed_appointment(session_factory, 42, tomorrow_at(scheduler))
    await seed_appointment(session_factory, 43, tomorrow_at(scheduler, 16), contacts="34 99123-4567")
    entry = await ledger.record_outbound(
        LedgerEntry(kind=MessageKind.TEMPLATE, status=MessageStatus.SENT, appointment_id=42, provider_message_id="wamid.old")
    )
    async with session_factory() as session:
        await session.execute(
            update(MessageLog).where(MessageLog.id == entry.id).values(created_at=datetime.now(UTC) - timedelta(days=3))
        )
        await session.commit()

    original = store.list_due_for_dispatch

    async def slow_join(*args, exclude_already_logged=True, **kwargs):
        if exclude_already_logged:
            raise TimeoutError
        return await original(*args, exclude_already_logged=exclude_already_logged, **kwargs)

    store.list_due_for_dispatch = slow_join

    summary = await scheduler.run_once()

    assert summary.counts["sent"] == 1
    assert [m.phone for m in channel.templates] == ["+5534991234567"]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_fetch_timeout_skips_run(scheduler, store):
    store.list_due_for_dispatch = AsyncMock(side_effect=TimeoutError)

    summary = await scheduler.run_once()

    assert summary.state is RunState.SKIPPED
    assert summary.reason == "db_timeout_fetch"
    assert scheduler.last_run is not None


@pytest.mark.integration
@pytest.mark.asyncio
async def test_dedup_timeout_skips_run(scheduler, ledger):
    ledger.has_entries_between = AsyncMock(side_effect=TimeoutError)

    summary = await scheduler.run_once()

    assert summary.reason == "db_timeout_dedup"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_transient_failure_is_recorded_for_retry(scheduler, ledger, channel, session_factory):
    await seed_appointment(session_factory, 42, tomorrow_at(scheduler))
    channel.fail_next(ChannelRetryableError("Service unavailable", status_code=503))

    summary = await scheduler.run_once()

    assert summary.counts["failed"] == 1
    [entry] = await ledger.find_recent(kinds=[MessageKind.TEMPLATE])
    assert entry.status is MessageStatus.FAILED
    assert entry.retry_count == 0
    assert entry.phone == "+5511999990000"
    assert '"retryable": true' in entry.error_detail
    assert entry.retryable is True


@pytest.mark.integration
@pytest.mark.asyncio
async def test_missing_phone_is_recorded(scheduler, ledger, channel, session_factory):
    await seed_appointment(session_factory, 42, tomorrow_at(scheduler), contacts="sem telefone")

    summary = await scheduler.run_once()

    assert summary.counts["no_phone"] == 1
    assert channel.sent == []
    [entry] = await ledger.find_recent(kinds=[MessageKind.TEMPLATE])
    assert entry.status is MessageStatus.FAILED
    assert "no_phone" in entry.error_detail
    assert entry.retryable is False


@pytest.mark.integration
@pytest.mark.asyncio
class TestTextFallback:
    async def test_fallback_inside_open_window(self, scheduler, ledger, channel, session_factory):
        scheduler.text_fallback = True
        await seed_appointment(session_factory, 42, tomorrow_at(scheduler))
        await ledger.record_inbound(
            kind=MessageKind.TEXT,
            status=MessageStatus.RECEIVED,
            phone_key="5511999990000",
            provider_event_id="wamid.in.1",
        )
        channel.fail_next(ChannelRejectedError("Template paused", provider_code=132015))

        summary = await scheduler.run_once()

        assert summary.counts["fallback"] == 1
        assert "Responda SIM" in channel.texts[0].body

    async def test_failed_fallback_is_recorded(self, scheduler, ledger, channel, session_factory):
        scheduler.text_fallback = True
        await seed_appointment(session_factory, 42, tomorrow_at(scheduler))
        await ledger.record_inbound(
            kind=MessageKind.TEXT,
            status=MessageStatus.RECEIVED,
            phone_key="5511999990000",
            provider_event_id="wamid.in.1",
        )
        channel.fail_next(
            ChannelRejectedError("Template paused", provider_code=132015),
            ChannelRejectedError("Invalid parameter", provider_code=100),
        )

        summary = await scheduler.run_once()

        assert summary.counts["failed"] == 1
        [text] = await ledger.find_recent(kinds=[MessageKind.TEXT], statuses=[MessageStatus.FAILED])
        assert text.appointment_id == 42
        assert '"provider_code": 100' in text.error_detail

    async def test_no_fallback_when_window_closed(self, scheduler, channel, session_factory):
        scheduler.text_fallback = True
        await seed_appointment(session_factory, 42, tomorrow_at(scheduler))
        channel.fail_next(ChannelRejectedError("Template paused", provider_code=132015))

        summary = await scheduler.run_once()

        assert summary.counts["failed"] == 1
        assert channel.texts == []
