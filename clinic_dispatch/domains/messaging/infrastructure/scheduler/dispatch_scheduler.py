# ============================================================================
# SCOPE: INFRASTRUCTURE LAYER (Messaging)
# Description: Confirmation template dispatch, once per day system-wide.
# ============================================================================
"""Dispatch Scheduler.

Each run:
1. Skips when a template was already sent successfully today (clinic time).
2. Selects active, unconfirmed appointments on `today + lead_days` without a
   prior template entry (failed sends are left to the retry job). If the
   dedup query times out, a plain query is filtered against the ledger.
3. Sends sequentially with a fixed pause, recording every outcome.
"""

import json
import logging
from typing import TYPE_CHECKING

from ...application.ports import ChannelError, SendResult
from ...domain import (
    SUCCESSFUL_SEND_STATUSES,
    Appointment,
    Direction,
    LedgerEntry,
    MessageKind,
    MessageStatus,
    phone_key,
)
from .base import RunState, RunSummary, SingleFlightScheduler, record_outbound_safely

if TYPE_CHECKING:
    from ...application.ports import IAppointmentStore, IMessageLedger, IMessagingChannel
    from ...application.services import SessionWindowCalculator, TemplateBuilder

logger = logging.getLogger(__name__)


def no_phone_detail(contacts: str | None) -> str:
    return json.dumps(
        {"code": "no_phone", "message": "No usable phone number", "contacts": contacts},
        ensure_ascii=False,
    )


class DispatchScheduler(SingleFlightScheduler):
    """Sends the confirmation template N days ahead."""

    name = "dispatch"

    def __init__(
        self,
        ledger: "IMessageLedger",
        store: "IAppointmentStore",
        channel: "IMessagingChannel",
        templates: "TemplateBuilder",
        template_name: str,
        language_code: str = "pt_BR",
        lead_days: int = 1,
        batch_size: int = 30,
        text_fallback: bool = False,
        session_window: "SessionWindowCalculator | None" = None,
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
        self.text_fallback = text_fallback
        self._session_window = session_window

    async def _run(self) -> RunSummary:
        today_start, today_end = self.day_window(0)
        try:
            already_sent = await self.with_db_timeout(
                self._ledger.has_entries_between(
                    MessageKind.TEMPLATE,
                    list(SUCCESSFUL_SEND_STATUSES),
                    today_start,
                    today_end,
                )
            )
        except TimeoutError:
            logger.warning("[dispatch] dedup check timed out, skipping run")
            return RunSummary(state=RunState.SKIPPED, reason="db_timeout_dedup")

        if already_sent:
            return RunSummary(state=RunState.SKIPPED, reason="already_dispatched_today")

        window_start, window_end = self.day_window(self.lead_days)
        candidates = await self._select_candidates(window_start, window_end)
        if candidates is None:
            return RunSummary(state=RunState.SKIPPED, reason="db_timeout_fetch")

        summary = RunSummary(state=RunState.COMPLETED, counts={"candidates": len(candidates)})
        logger.info(f"[dispatch] {len(candidates)} appointments between {window_start} and {window_end}")

        for index, appointment in enumerate(candidates):
            await self.pace(index)
            summary.bump(await self._dispatch_one(appointment))

        return summary

    async def _select_candidates(self, window_start, window_end) -> list[Appointment] | None:
        try:
            return await self.with_db_timeout(
                self._store.list_due_for_dispatch(
                    window_start,
                    window_end,
                    exclude_already_logged=True,
                    limit=self.batch_size,
                )
            )
        except TimeoutError:
            logger.warning("[dispatch] candidate query timed out, retrying without the ledger join")

        try:
            candidates = await self.with_db_timeout(
                self._store.list_due_for_dispatch(
                    window_start,
                    window_end,
                    exclude_already_logged=False,
                    limit=self.batch_size,
                )
            )
            done = await self.with_db_timeout(
                self._ledger.appointments_with_attempts(MessageKind.TEMPLATE, [a.id for a in candidates])
            )
        except TimeoutError:
            logger.error("[dispatch] simplified candidate query timed out as well")
            return None
        return [a for a in candidates if a.id not in done]

    async def _dispatch_one(self, appointment: Appointment) -> str:
        if not appointment.is_pending:
            return "skipped"

        phone = appointment.primary_phone
        if not phone:
            logger.warning(f"[dispatch] appointment {appointment.id} has no usable phone")
            await self._record(
                LedgerEntry(
                    kind=MessageKind.TEMPLATE,
                    status=MessageStatus.FAILED,
                    appointment_id=appointment.id,
                    phone_key=phone_key(appointment.contacts) or None,
                    template_name=self.template_name,
                    error_detail=no_phone_detail(appointment.contacts),
                    retryable=False,
                )
            )
            return "no_phone"

        try:
            result = await self._channel.send_template(
                phone,
                self.template_name,
                self.language_code,
                self._templates.body_parameters(appointment),
                self._templates.button_payloads(appointment.id),
            )
        except ChannelError as e:
            logger.warning(f"[dispatch] template to {phone} for appointment {appointment.id} failed: {e.code}")
            await self._record(
                LedgerEntry(
                    kind=MessageKind.TEMPLATE,
                    status=MessageStatus.FAILED,
                    appointment_id=appointment.id,
                    phone=phone,
                    phone_key=phone_key(phone),
                    template_name=self.template_name,
                    error_detail=e.to_detail(),
                    retryable=e.retryable,
                    last_attempt_at=self.now(),
                )
            )
            if self.text_fallback and await self._send_fallback(appointment, phone):
                return "fallback"
            return "failed"

        await self._record_sent(appointment, phone, result, MessageKind.TEMPLATE, self.template_name)
        return "sent"

    async def _send_fallback(self, appointment: Appointment, phone: str) -> bool:
        """Free text instead of the template, only inside an open session window."""
        if self._session_window is None or not await self._session_window.is_open(phone_key(phone)):
            logger.info(f"[dispatch] no text fallback for {phone}: session window closed")
            return False
        try:
            result = await self._channel.send_text(phone, self._templates.fallback_text(appointment))
        except ChannelError as e:
            logger.warning(f"[dispatch] text fallback to {phone} failed: {e.code}")
            await self._record(
                LedgerEntry(
                    kind=MessageKind.TEXT,
                    status=MessageStatus.FAILED,
                    appointment_id=appointment.id,
                    phone=phone,
                    phone_key=phone_key(phone),
                    error_detail=e.to_detail(),
                    retryable=False,
                    last_attempt_at=self.now(),
                )
            )
            return False
        await self._record_sent(appointment, phone, result, MessageKind.TEXT, None)
        return True

    async def _record_sent(
        self,
        appointment: Appointment,
        phone: str,
        result: SendResult,
        kind: MessageKind,
        template_name: str | None,
    ) -> None:
        await self._record(
            LedgerEntry(
                kind=kind,
                status=MessageStatus.SENT,
                direction=Direction.OUTBOUND,
                appointment_id=appointment.id,
                phone=phone,
                phone_key=phone_key(phone),
                provider_message_id=result.provider_message_id,
                template_name=template_name,
                last_attempt_at=self.now(),
            )
        )

    async def _record(self, entry: LedgerEntry) -> None:
        await record_outbound_safely(self._ledger, entry, self.name)
