"""
Tests for RetryScheduler: bounded backoff resends and ledger/store
reconciliation.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from clinic_dispatch.domains.messaging.application.ports import (
    ChannelRejectedError,
    ChannelRetryableError,
    ChannelTimeoutError,
)
from clinic_dispatch.domains.messaging.domain import LedgerEntry, MessageKind, MessageStatus
from clinic_dispatch.domains.messaging.infrastructure.scheduler import DispatchScheduler, RetryScheduler, RunState
from tests.utils.factories import seed_appointment

TEMPLATE = "confirmacao_personalizada"
T0 = datetime.now(UTC).replace(microsecond=0)


def _at(scheduler, when: datetime) -> None:
    scheduler.now = lambda: when


def _retry_scheduler(ledger, store, channel, templates, **overrides) -> RetryScheduler:
    options = {
        "template_names": {MessageKind.TEMPLATE: TEMPLATE, MessageKind.REMINDER: "lembrete_consulta"},
        "max_attempts": 3,
        "backoff_base_seconds": 90,
        "interval_seconds": 300,
        "send_interval_seconds": 0,
    }
    options.update(overrides)
    return RetryScheduler(ledger=ledger, store=store, channel=channel, templates=templates, **options)


@pytest_asyncio.fixture
async def appointment_42(session_factory):
    await seed_appointment(session_factory, 42, T0 + timedelta(days=1))
    return 42


@pytest_asyncio.fixture
async def failed_dispatch(ledger, appointment_42) -> LedgerEntry:
    """Initial confirmation template of appointment 42 that failed with a transient error."""
    return await ledger.record_outbound(
        LedgerEntry(
            kind=MessageKind.TEMPLATE,
            status=MessageStatus.FAILED,
            appointment_id=appointment_42,
            phone="+5511999990000",
            phone_key="5511999990000",
            template_name=TEMPLATE,
            error_detail=ChannelRetryableError("Service unavailable", status_code=503).to_detail(),
        )
    )


@pytest.mark.integration
@pytest.mark.asyncio
class TestResend:
    async def test_fails_twice_then_succeeds(self, ledger, store, channel, templates, failed_dispatch):
        scheduler = _retry_scheduler(ledger, store, channel, templates, sync_states=False)

        channel.fail_next(ChannelTimeoutError("Timeout after 15s"))
        _at(scheduler, T0)
        first = await scheduler.run_once()

        entry = (await ledger.find_recent(kinds=[MessageKind.TEMPLATE]))[0]
        assert first.counts["resend_failed"] == 1
        assert entry.status is MessageStatus.FAILED
        assert entry.retry_count == 1
        assert entry.next_retry_at == T0 + timedelta(seconds=90)

        # Not due yet
        idle = await scheduler.run_once()
        assert idle.counts["resend_candidates"] == 0

        _at(scheduler, T0 + timedelta(seconds=91))
        second = await scheduler.run_once()

        entry = (await ledger.find_recent(kinds=[MessageKind.TEMPLATE]))[0]
        assert second.counts["resend_sent"] == 1
        assert entry.status is MessageStatus.SENT
        assert entry.retry_count == 2
        assert entry.next_retry_at is None
        assert entry.provider_message_id == channel.templates[-1].provider_message_id
        assert channel.templates[-1].button_payloads == ["confirm_42", "cancel_42"]

    async def test_backoff_doubles_between_attempts(self, ledger, store, channel, templates, failed_dispatch):
        scheduler = _retry_scheduler(ledger, store, channel, templates, sync_states=False)
        deltas = []
        now = T0
        for _ in range(3):
            channel.fail_next(ChannelRetryableError("Service unavailable", status_code=503))
            _at(scheduler, now)
            await scheduler.run_once()
            entry = (await ledger.find_recent(kinds=[MessageKind.TEMPLATE]))[0]
            deltas.append((entry.next_retry_at - now).total_seconds())
            now = entry.next_retry_at

        assert deltas == [90, 180, 360]

    async def test_attempt_cap_stops_resends(self, ledger, store, channel, templates, failed_dispatch):
        scheduler = _retry_scheduler(ledger, store, channel, templates, sync_states=False, max_attempts=1)
        channel.fail_next(ChannelRetryableError("Service unavailable", status_code=503))
        _at(scheduler, T0)
        await scheduler.run_once()

        _at(scheduler, T0 + timedelta(hours=1))
        summary = await scheduler.run_once()

        assert summary.counts["resend_candidates"] == 0
        assert len(channel.templates) == 0

    async def test_confirmed_appointment_is_discarded(self, ledger, store, channel, templates, failed_dispatch):
        await store.confirm(42)
        scheduler = _retry_scheduler(ledger, store, channel, templates, sync_states=False)

        summary = await scheduler.run_once()

        entry = (await ledger.find_recent(kinds=[MessageKind.TEMPLATE]))[0]
        assert summary.counts["resend_discarded"] == 1
        assert entry.status is MessageStatus.DISCARDED
        assert "already_confirmed" in entry.error_detail
        assert channel.templates == []

    async def test_cancelled_appointment_is_discarded(self, ledger, store, channel, templates, failed_dispatch):
        await store.cancel(42, "Cancelled at the front desk")
        scheduler = _retry_scheduler(ledger, store, channel, templates, sync_states=False)

        await scheduler.run_once()

        entry = (await ledger.find_recent(kinds=[MessageKind.TEMPLATE]))[0]
        assert entry.status is MessageStatus.DISCARDED
        assert "appointment_inactive" in entry.error_detail


def _dispatch_scheduler(ledger, store, channel, templates) -> DispatchScheduler:
    return DispatchScheduler(
        ledger=ledger,
        store=store,
        channel=channel,
        templates=templates,
        template_name=TEMPLATE,
        interval_seconds=60,
        send_interval_seconds=0,
    )


async def _seed_for_dispatch(dispatch: DispatchScheduler, session_factory, **kwargs) -> None:
    start, _ = dispatch.day_window(1)
    await seed_appointment(session_factory, 42, start + timedelta(hours=15), **kwargs)


@pytest.mark.integration
@pytest.mark.asyncio
class TestPermanentFailures:
    async def test_rejected_dispatch_is_never_resent(self, ledger, store, channel, templates, session_factory):
        dispatch = _dispatch_scheduler(ledger, store, channel, templates)
        await _seed_for_dispatch(dispatch, session_factory)
        channel.fail_next(ChannelRejectedError("Template not approved", provider_code=132001, status_code=400))
        await dispatch.run_once()

        summary = await _retry_scheduler(ledger, store, channel, templates, sync_states=False).run_once()

        assert summary.counts == {"resend_candidates": 0}
        assert channel.templates == []
        [entry] = await ledger.find_recent(kinds=[MessageKind.TEMPLATE])
        assert entry.status is MessageStatus.FAILED
        assert entry.retry_count == 0

    async def test_missing_phone_is_never_resent(self, ledger, store, channel, templates, session_factory):
        dispatch = _dispatch_scheduler(ledger, store, channel, templates)
        await _seed_for_dispatch(dispatch, session_factory, contacts="sem telefone")
        await dispatch.run_once()

        summary = await _retry_scheduler(ledger, store, channel, templates, sync_states=False).run_once()

        assert summary.counts == {"resend_candidates": 0}
        assert channel.sent == []

    async def test_rejection_on_resend_stops_retries(self, ledger, store, channel, templates, failed_dispatch):
        scheduler = _retry_scheduler(ledger, store, channel, templates, sync_states=False)
        channel.fail_next(ChannelRejectedError("Invalid recipient", provider_code=131026, status_code=400))
        _at(scheduler, T0)

        first = await scheduler.run_once()

        entry = (await ledger.find_recent(kinds=[MessageKind.TEMPLATE]))[0]
        assert first.counts["resend_rejected"] == 1
        assert entry.status is MessageStatus.FAILED
        assert entry.retryable is False
        assert entry.retry_count == 1
        assert entry.next_retry_at is None
        assert "131026" in entry.error_detail

        _at(scheduler, T0 + timedelta(hours=1))
        later = await scheduler.run_once()

        assert later.counts["resend_candidates"] == 0
        assert channel.templates == []


@pytest.mark.integration
@pytest.mark.asyncio
class TestNoDuplicateSends:
    async def test_failed_dispatch_is_sent_once(self, ledger, store, channel, templates, session_factory):
        dispatch = _dispatch_scheduler(ledger, store, channel, templates)
        retry = _retry_scheduler(ledger, store, channel, templates, sync_states=False)
        await _seed_for_dispatch(dispatch, session_factory)
        channel.fail_next(ChannelRetryableError("Service unavailable", status_code=503))

        await dispatch.run_once()
        next_tick = await dispatch.run_once()
        resend = await retry.run_once()
        after_resend = await dispatch.run_once()
        idle_retry = await retry.run_once()

        assert next_tick.counts == {"candidates": 0}
        assert resend.counts["resend_sent"] == 1
        assert after_resend.reason == "already_dispatched_today"
        assert idle_retry.counts["resend_candidates"] == 0
        assert [m.button_payloads for m in channel.templates] == [["confirm_42", "cancel_42"]]

    async def test_stale_failure_is_discarded_after_a_later_send(
        self, ledger, store, channel, templates, failed_dispatch
    ):
        await ledger.record_outbound(
            LedgerEntry(
                kind=MessageKind.TEMPLATE,
                status=MessageStatus.DELIVERED,
                appointment_id=42,
                provider_message_id="wamid.manual",
            )
        )
        scheduler = _retry_scheduler(ledger, store, channel, templates, sync_states=False)

        summary = await scheduler.run_once()

        entry = await ledger.find_recent(kinds=[MessageKind.TEMPLATE], statuses=[MessageStatus.DISCARDED])
        assert summary.counts["resend_discarded"] == 1
        assert "already_sent" in entry[0].error_detail
        assert channel.templates == []


async def _intent(ledger, kind: MessageKind, status: MessageStatus, event_id: str = "wamid.in.1", appointment_id=42):
    write = await ledger.record_inbound(
        kind=kind,
        status=status,
        phone_key="5511999990000",
        appointment_id=appointment_id,
        provider_event_id=event_id,
        body="OK",
    )
    return write.entry


@pytest.mark.integration
@pytest.mark.asyncio
class TestStateSync:
    async def test_confirmation_drift_converges_then_no_op(self, ledger, store, channel, templates, appointment_42):
        entry = await _intent(ledger, MessageKind.CONFIRMATION, MessageStatus.CONFIRMED)
        scheduler = _retry_scheduler(ledger, store, channel, templates, resend_enabled=False)
        store_spy = AsyncMock(wraps=store)
        scheduler._store = store_spy

        first = await scheduler.run_once()

        assert first.counts["sync_reapplied"] == 1
        assert (await store.get_by_id(42)).confirmed
        synced = await ledger.find_by_provider_message_id(entry.provider_message_id)
        assert synced.status is MessageStatus.CONFIRMED_SYNCED

        second = await scheduler.run_once()

        assert second.counts == {"sync_candidates": 0}
        assert store_spy.confirm.await_count == 1

    async def test_already_confirmed_is_marked_synced(self, ledger, store, channel, templates, appointment_42):
        await store.confirm(42)
        entry = await _intent(ledger, MessageKind.CONFIRMATION, MessageStatus.CONFIRMED)
        scheduler = _retry_scheduler(ledger, store, channel, templates, resend_enabled=False)

        summary = await scheduler.run_once()

        assert summary.counts["sync_already_synced"] == 1
        assert (await ledger.find_by_provider_message_id(entry.provider_message_id)).status is (
            MessageStatus.CONFIRMED_SYNCED
        )

    async def test_cancellation_drift_is_reapplied(self, ledger, store, channel, templates, appointment_42):
        entry = await _intent(ledger, MessageKind.CANCELLATION, MessageStatus.CANCELLED)
        scheduler = _retry_scheduler(ledger, store, channel, templates, resend_enabled=False)

        await scheduler.run_once()

        assert not (await store.get_by_id(42)).active
        assert (await ledger.find_by_provider_message_id(entry.provider_message_id)).status is (
            MessageStatus.CANCELLED_SYNCED
        )

    async def test_confirmation_of_inactive_appointment_is_discarded(
        self, ledger, store, channel, templates, appointment_42
    ):
        await store.cancel(42, "Cancelled at the front desk")
        entry = await _intent(ledger, MessageKind.CONFIRMATION, MessageStatus.CONFIRMED)
        scheduler = _retry_scheduler(ledger, store, channel, templates, resend_enabled=False)

        await scheduler.run_once()

        assert not (await store.get_by_id(42)).confirmed
        assert (await ledger.find_by_provider_message_id(entry.provider_message_id)).status is MessageStatus.DISCARDED

    async def test_store_failure_backs_off(self, ledger, store, channel, templates, appointment_42):
        entry = await _intent(ledger, MessageKind.CONFIRMATION, MessageStatus.CONFIRMED)
        scheduler = _retry_scheduler(ledger, store, channel, templates, resend_enabled=False)
        scheduler._store = AsyncMock(wraps=store)
        scheduler._store.confirm.side_effect = RuntimeError("deadlock detected")
        _at(scheduler, T0)

        summary = await scheduler.run_once()

        updated = await ledger.find_by_provider_message_id(entry.provider_message_id)
        assert summary.counts["sync_failed"] == 1
        assert updated.status is MessageStatus.CONFIRMED
        assert updated.retry_count == 1
        assert updated.next_retry_at == T0 + timedelta(seconds=90)


@pytest.mark.unit
@pytest.mark.asyncio
class TestPhases:
    async def test_phase_failure_is_isolated(self, ledger, store, channel, templates):
        scheduler = _retry_scheduler(ledger, store, channel, templates)
        scheduler._resend_phase = AsyncMock(side_effect=RuntimeError("boom"))

        summary = await scheduler.run_once()

        assert summary.state is RunState.COMPLETED
        assert summary.error == "resend: boom"
        assert summary.counts["sync_candidates"] == 0

    async def test_all_phases_failing_errors_the_run(self, ledger, store, channel, templates):
        scheduler = _retry_scheduler(ledger, store, channel, templates)
        scheduler._resend_phase = AsyncMock(side_effect=RuntimeError("boom"))
        scheduler._sync_phase = AsyncMock(side_effect=RuntimeError("bang"))

        summary = await scheduler.run_once()

        assert summary.state is RunState.ERRORED
        assert scheduler.last_run is not None

    async def test_timeout_is_counted(self, ledger, store, channel, templates):
        scheduler = _retry_scheduler(ledger, store, channel, templates, sync_states=False)
        scheduler._resend_phase = AsyncMock(side_effect=TimeoutError)

        summary = await scheduler.run_once()

        assert summary.counts["resend_timeout"] == 1

    async def test_no_phases_enabled(self, ledger, store, channel, templates):
        scheduler = _retry_scheduler(ledger, store, channel, templates, resend_enabled=False, sync_states=False)

        summary = await scheduler.run_once()

        assert summary.state is RunState.SKIPPED
        assert summary.reason == "disabled"
