# ============================================================================
# SCOPE: INFRASTRUCTURE LAYER (Messaging)
# Description: Appointment reminder template, deduplicated per appointment.
# ============================================================================
"""Reminder Scheduler.

Same run model as the dispatch job with its own cadence, lead time and
template. Dedup is per appointment (no prior successful reminder), and a
run is skipped when a full batch of reminders was written recently.
"""

import logging
from typing import TYPE_CHECKING

from ...application.ports import ChannelError
from ...domain import Appointment, LedgerEntry, MessageKind, MessageStatus, phone_key
from .base import RunState, RunSummary, SingleFlightScheduler, record_outbound_safely
from .dispatch_scheduler import no_phone_detail

if TYPE_CHECKING:
    from ...application.ports import IAppointmentStore, IMessageLedger, IMessagingChannel
    from ...application.services import TemplateBuilder

logger = logging.getLogger(__name__)


class ReminderScheduler(SingleFlightScheduler):
    """Sends the reminder template to appointments `lead_days` ahead."""

    name = "reminder"

    def __init__(
        self,
        ledger: "IMessageLedger",
        store: "IAppointmentStore",
        channel: "IMessagingChannel",
        templates: "TemplateBuilder",
        template_name: str,
        language_code: str = "pt_BR",
        lead_days: int = 1,
        batch_size: int = 40,
        lookback_minutes: int = 60,
        require_confirmed: bool = False,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._ledger = ledger
        self._store = store
        self._channel = channel
        self._templates = templates
        self.template_name = template_name
        self.language_code = language_code
        self.lead_days = lead_days
        self.batch_size = batch_size
        self.lookback_minutes = lookback_minutes
        self.require_confirmed = require_confirmed

    async def _run(self) -> RunSummary:
        if await self._recently_active():
            return RunSummary(state=RunState.SKIPPED, reason="recent_activity")

        window_start, window_end = self.day_window(self.lead_days)
        try:
            candidates = await self.with_db_timeout(
                self._store.list_due_for_reminder(
                    window_start,
                    window_end,
                    require_confirmed=self.require_confirmed,
                    exclude_already_logged=True,
                    limit=self.batch_size,
                )
            )
        except TimeoutError:
            logger.warning("[reminder] candidate query timed out, skipping run")
            return RunSummary(state=RunState.SKIPPED, reason="db_timeout_fetch", error="db_timeout_fetch")

        summary = RunSummary(state=RunState.COMPLETED, counts={"candidates": len(candidates)})
        for index, appointment in enumerate(candidates):
            await self.pace(index)
            summary.bump(await self._remind(appointment))
        return summary

    async def _recently_active(self) -> bool:
        """A full batch of reminders within the lookback window means another run just went out."""
        if not self.lookback_minutes:
            return False
        try:
            recent = await self.with_db_timeout(
                self._ledger.find_recent(
                    kinds=[MessageKind.REMINDER],
                    lookback_minutes=self.lookback_minutes,
                    limit=self.batch_size,
                )
            )
        except TimeoutError:
            logger.warning("[reminder] recent-activity check timed out, continuing")
            return False
        return len(recent) >= self.batch_size

    async def _remind(self, appointment: Appointment) -> str:
        if not appointment.active:
            return "skipped"

        phone = appointment.primary_phone
        if not phone:
            await self._record(
                LedgerEntry(
                    kind=MessageKind.REMINDER,
                    status=MessageStatus.FAILED,
                    appointment_id=appointment.id,
                    phone_key=phone_key(appointment.contacts) or None,
                    template_name=self.template_name,
                    error_detail=no_phone_detail(appointment.contacts),
                    retryable=False,
                )
            )
            return "no_phone"

        entry = LedgerEntry(
            kind=MessageKind.REMINDER,
            status=MessageStatus.SENT,
            appointment_id=appointment.id,
            phone=phone,
            phone_key=phone_key(phone),
            template_name=self.template_name,
            last_attempt_at=self.now(),
        )
        try:
            result = await self._channel.send_template(
                phone,
                self.template_name,
                self.language_code,
                self._templates.body_parameters(appointment),
            )
        except ChannelError as e:
            logger.warning(f"[reminder] reminder to {phone} for appointment {appointment.id} failed: {e.code}")
            entry.status = MessageStatus.FAILED
            entry.error_detail = e.to_detail()
            entry.retryable = e.retryable
            await self._record(entry)
            return "failed"

        entry.provider_message_id = result.provider_message_id
        await self._record(entry)
        return "sent"

    async def _record(self, entry: LedgerEntry) -> None:
        await record_outbound_safely(self._ledger, entry, self.name)
