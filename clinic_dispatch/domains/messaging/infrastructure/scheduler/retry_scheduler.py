# ============================================================================
# SCOPE: INFRASTRUCTURE LAYER (Messaging)
# Description: Resend failed entries and reconcile appointment state.
# ============================================================================
"""Retry / Reconciliation Scheduler.

Two independent phases per run:

Resend: failed template/reminder entries under the attempt cap are marked
`retrying`, re-resolved against the appointment store and sent again. A
transient failure re-arms `next_retry_at = now + base * 2^(attempt-1)`; a
permanent one leaves the entry `failed` with `retryable=False`. Entries
whose appointment got the same kind of message in the meantime are
discarded as `already_sent`.

State sync: recent confirmation/cancellation intents are compared with the
appointment store. Matching state marks the entry `*_synced`; drift is
repaired by re-applying the mutation, with the same backoff on failure.
"""

import json
import logging
from typing import TYPE_CHECKING, Any

from ...application.ports import ChannelError
from ...application.services import compute_next_retry_at
from ...domain import Appointment, LedgerEntry, MessageKind, MessageStatus, phone_key, pick_first_phone
from .base import RunState, RunSummary, SingleFlightScheduler

if TYPE_CHECKING:
    from ...application.ports import IAppointmentStore, IMessageLedger, IMessagingChannel
    from ...application.services import TemplateBuilder

logger = logging.getLogger(__name__)

SYNC_CANCEL_REASON = "Cancelled by patient via WhatsApp (reconciled)"


def _detail(code: str, message: str, **extra: Any) -> str:
    return json.dumps({"code": code, "message": message, **extra}, ensure_ascii=False, default=str)


class RetryScheduler(SingleFlightScheduler):
    """Bounded resends plus ledger/store reconciliation."""

    name = "retry"

    def __init__(
        self,
        ledger: "IMessageLedger",
        store: "IAppointmentStore",
        channel: "IMessagingChannel",
        templates: "TemplateBuilder",
        template_names: dict[MessageKind, str],
        language_code: str = "pt_BR",
        batch_size: int = 20,
        max_attempts: int = 3,
        backoff_base_seconds: int = 90,
        retry_kinds: list[str] | None = None,
        retry_statuses: list[str] | None = None,
        resend_enabled: bool = True,
        sync_states: bool = True,
        state_batch_size: int = 20,
        state_lookback_minutes: int = 1440,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._ledger = ledger
        self._store = store
        self._channel = channel
        self._templates = templates
        self.template_names = template_names
        self.language_code = language_code
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.retry_kinds = [MessageKind(k) for k in (retry_kinds or ["template", "reminder"])]
        self.retry_statuses = [MessageStatus(s) for s in (retry_statuses or ["failed", "error"])]
        self.resend_enabled = resend_enabled
        self.sync_states = sync_states
        self.state_batch_size = state_batch_size
        self.state_lookback_minutes = state_lookback_minutes

    async def _run(self) -> RunSummary:
        summary = RunSummary(state=RunState.COMPLETED)
        errors = []

        phases = []
        if self.resend_enabled:
            phases.append(("resend", self._resend_phase))
        if self.sync_states:
            phases.append(("sync", self._sync_phase))

        if not phases:
            return RunSummary(state=RunState.SKIPPED, reason="disabled")

        for name, phase in phases:
            try:
                await phase(summary)
            except TimeoutError:
                logger.warning(f"[retry] {name} phase query timed out, phase skipped")
                summary.bump(f"{name}_timeout")
            except Exception as e:
                logger.error(f"[retry] {name} phase failed: {e}", exc_info=True)
                errors.append(f"{name}: {e}")

        if errors:
            summary.error = "; ".join(errors)
            if len(errors) == len(phases):
                summary.state = RunState.ERRORED
        return summary

    def _backoff(self, attempt: int):
        return compute_next_retry_at(attempt, self.backoff_base_seconds, self.now())

    # =========================================================================
    # Resend phase
    # =========================================================================

    async def _resend_phase(self, summary: RunSummary) -> None:
        entries = await self.with_db_timeout(
            self._ledger.find_for_retry(
                self.retry_kinds,
                self.retry_statuses,
                self.max_attempts,
                self.batch_size,
                now=self.now(),
            )
        )
        summary.bump("resend_candidates", len(entries))

        for index, entry in enumerate(entries):
            await self.pace(index)
            outcome = await self._resend(entry)
            summary.bump(f"resend_{outcome}")

    async def _resend(self, entry: LedgerEntry) -> str:
        attempt = entry.retry_count + 1
        await self._ledger.update_entry(
            entry.id,
            status=MessageStatus.RETRYING,
            retry_count=attempt,
            last_attempt_at=self.now(),
            next_retry_at=None,
        )

        appointment = await self._store.get_by_id(entry.appointment_id) if entry.appointment_id is not None else None
        if appointment is None:
            return await self._discard(entry, "appointment_not_found", "Appointment no longer exists")
        if not appointment.active:
            return await self._discard(entry, "appointment_inactive", "Appointment was cancelled")
        if entry.kind is MessageKind.TEMPLATE and appointment.confirmed:
            return await self._discard(entry, "already_confirmed", "Appointment already confirmed")
        if appointment.id in await self._ledger.appointments_with_successful(entry.kind, [appointment.id]):
            return await self._discard(entry, "already_sent", f"Another {entry.kind.value} was already sent")

        phone = entry.phone or pick_first_phone(appointment.contacts)
        if not phone:
            await self._ledger.update_entry(
                entry.id,
                status=MessageStatus.FAILED,
                error_detail=_detail("no_phone", "No usable phone number", contacts=appointment.contacts),
                retryable=False,
            )
            return "rejected"

        try:
            result = await self._send(entry, appointment, phone)
        except ChannelError as e:
            logger.warning(f"[retry] attempt {attempt} for entry {entry.id} failed: {e.code}")
            if not e.retryable:
                await self._ledger.update_entry(
                    entry.id,
                    status=MessageStatus.FAILED,
                    error_detail=e.to_detail(),
                    retryable=False,
                )
                return "rejected"
            await self._ledger.update_entry(
                entry.id,
                status=MessageStatus.FAILED,
                error_detail=e.to_detail(),
                next_retry_at=self._backoff(attempt),
            )
            return "failed"

        try:
            await self._ledger.update_entry(
                entry.id,
                status=MessageStatus.SENT,
                provider_message_id=result.provider_message_id,
                phone=phone,
                phone_key=phone_key(phone),
                error_detail=None,
                next_retry_at=None,
            )
        except Exception as e:
            logger.error(
                f"[retry] entry {entry.id} resent as {result.provider_message_id} but not recorded: {e}",
                exc_info=True,
            )
        logger.info(f"[retry] entry {entry.id} resent on attempt {attempt} ({result.provider_message_id})")
        return "sent"

    async def _send(self, entry: LedgerEntry, appointment: Appointment, phone: str):
        template_name = entry.template_name or self.template_names[entry.kind]
        buttons = self._templates.button_payloads(appointment.id) if entry.kind is MessageKind.TEMPLATE else None
        return await self._channel.send_template(
            phone,
            template_name,
            self.language_code,
            self._templates.body_parameters(appointment),
            buttons,
        )

    async def _discard(self, entry: LedgerEntry, code: str, message: str) -> str:
        logger.info(f"[retry] discarding entry {entry.id}: {code}")
        await self._ledger.update_entry(
            entry.id,
            status=MessageStatus.DISCARDED,
            error_detail=_detail(code, message, appointment_id=entry.appointment_id),
        )
        return "discarded"

    # =========================================================================
    # State-sync phase
    # =========================================================================

    async def _sync_phase(self, summary: RunSummary) -> None:
        entries = await self.with_db_timeout(
            self._ledger.find_for_retry(
                [MessageKind.CONFIRMATION, MessageKind.CANCELLATION],
                [MessageStatus.CONFIRMED, MessageStatus.CANCELLED],
                self.max_attempts,
                self.state_batch_size,
                lookback_minutes=self.state_lookback_minutes,
                now=self.now(),
            )
        )
        summary.bump("sync_candidates", len(entries))

        for entry in entries:
            try:
                outcome = await self._sync(entry)
            except Exception as e:
                logger.error(f"[retry] state sync of entry {entry.id} failed: {e}", exc_info=True)
                outcome = "error"
            summary.bump(f"sync_{outcome}")

    async def _sync(self, entry: LedgerEntry) -> str:
        if entry.appointment_id is None:
            await self._ledger.update_entry(entry.id, status=entry.status.synced)
            return "unresolved"

        appointment = await self._store.get_by_id(entry.appointment_id)
        if entry.kind is MessageKind.CONFIRMATION:
            return await self._sync_confirmation(entry, appointment)
        return await self._sync_cancellation(entry, appointment)

    async def _sync_confirmation(self, entry: LedgerEntry, appointment: Appointment | None) -> str:
        if appointment is None or not appointment.active:
            await self._ledger.update_entry(
                entry.id,
                status=MessageStatus.DISCARDED,
                error_detail=_detail("appointment_inactive", "Cannot confirm a missing or cancelled appointment"),
            )
            return "discarded"

        if appointment.confirmed:
            await self._ledger.update_entry(entry.id, status=MessageStatus.CONFIRMED_SYNCED)
            return "already_synced"

        attempt = entry.retry_count + 1
        try:
            await self._store.confirm(appointment.id)
        except Exception as e:
            logger.warning(f"[retry] re-confirming appointment {appointment.id} failed: {e}")
            await self._ledger.update_entry(
                entry.id,
                retry_count=attempt,
                last_attempt_at=self.now(),
                next_retry_at=self._backoff(attempt),
                error_detail=_detail("store_error", str(e)),
            )
            return "failed"

        logger.info(f"[retry] appointment {appointment.id} re-confirmed from ledger entry {entry.id}")
        await self._ledger.update_entry(
            entry.id,
            status=MessageStatus.CONFIRMED_SYNCED,
            retry_count=attempt,
            last_attempt_at=self.now(),
            error_detail=None,
        )
        return "reapplied"

    async def _sync_cancellation(self, entry: LedgerEntry, appointment: Appointment | None) -> str:
        if appointment is None or not appointment.active:
            await self._ledger.update_entry(entry.id, status=MessageStatus.CANCELLED_SYNCED)
            return "already_synced"

        attempt = entry.retry_count + 1
        try:
            await self._store.cancel(appointment.id, SYNC_CANCEL_REASON)
        except Exception as e:
            logger.warning(f"[retry] re-cancelling appointment {appointment.id} failed: {e}")
            await self._ledger.update_entry(
                entry.id,
                retry_count=attempt,
                last_attempt_at=self.now(),
                next_retry_at=self._backoff(attempt),
                error_detail=_detail("store_error", str(e)),
            )
            return "failed"

        logger.info(f"[retry] appointment {appointment.id} re-cancelled from ledger entry {entry.id}")
        await self._ledger.update_entry(
            entry.id,
            status=MessageStatus.CANCELLED_SYNCED,
            retry_count=attempt,
            last_attempt_at=self.now(),
            error_detail=None,
        )
        return "reapplied"
