# ============================================================================
# SCOPE: APPLICATION LAYER (Messaging)
# Description: Webhook intent resolver and delivery status updates.
# ============================================================================
"""Process Webhook Use Case.

For every inbound message of a provider envelope:
1. Classify intent (payload id, keyword, title).
2. Resolve the appointment: payload id, reply context, latest pending
   appointment of the sender, latest appointment seen in the ledger.
3. Claim the event in the ledger keyed by the provider message id.
   A duplicate claim stops processing, so replays never mutate the
   appointment or acknowledge twice.
4. Mutate the appointment store and acknowledge the sender.

Delivery receipts (`statuses[]`) are applied to the matching ledger row.
"""

import json
import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from clinic_dispatch.models.webhook import MessageStatusReceipt, WhatsAppMessage, WhatsAppWebhookRequest

from ...domain import (
    Appointment,
    Direction,
    Intent,
    LedgerEntry,
    MessageKind,
    MessageStatus,
    phone_key,
)
from ..dto import InboundMessage, StatusUpdate, UseCaseResult, WebhookOutcome
from ..ports import ChannelError
from ..services import IntentClassifier, IntentMatch, TemplateBuilder

if TYPE_CHECKING:
    from ..ports import IAppointmentStore, IMessageLedger, IMessagingChannel

logger = logging.getLogger(__name__)

RECEIPT_STATUSES = {
    "sent": MessageStatus.SENT,
    "delivered": MessageStatus.DELIVERED,
    "read": MessageStatus.READ,
    "failed": MessageStatus.FAILED,
}

CANCEL_REASON = "Cancelled by patient via WhatsApp"


def to_inbound_message(message: WhatsAppMessage) -> InboundMessage:
    """Flatten a provider message into an InboundMessage."""
    interactive_id = interactive_title = None
    if message.interactive:
        reply = message.interactive.button_reply or message.interactive.list_reply
        if reply:
            interactive_id = reply.id
            interactive_title = reply.title

    return InboundMessage(
        provider_message_id=message.id,
        from_phone=message.from_,
        message_type=message.type,
        text=message.text.body if message.text else None,
        button_text=message.button.text if message.button else None,
        button_payload=message.button.payload if message.button else None,
        interactive_id=interactive_id,
        interactive_title=interactive_title,
        context_id=message.context.id if message.context else None,
        timestamp=message.sent_at,
    )


def to_status_update(receipt: MessageStatusReceipt) -> StatusUpdate:
    return StatusUpdate(
        provider_message_id=receipt.id,
        status=receipt.status,
        recipient=receipt.recipient_id,
        errors=[error.model_dump(exclude_none=True) for error in receipt.errors],
    )


def parse_envelope(payload: dict[str, Any]) -> tuple[list[InboundMessage], list[StatusUpdate]]:
    """Extract inbound messages and delivery receipts from a webhook body.

    Raises:
        pydantic.ValidationError: If the envelope shape is invalid.
    """
    request = WhatsAppWebhookRequest.model_validate(payload)
    messages = [to_inbound_message(m) for m in request.iter_messages()]
    statuses = [to_status_update(s) for s in request.iter_statuses()]
    return messages, statuses


class ProcessWebhookUseCase:
    """Applies inbound replies and delivery receipts exactly once per event id."""

    def __init__(
        self,
        ledger: "IMessageLedger",
        store: "IAppointmentStore",
        channel: "IMessagingChannel",
        classifier: IntentClassifier,
        templates: TemplateBuilder,
    ) -> None:
        self._ledger = ledger
        self._store = store
        self._channel = channel
        self._classifier = classifier
        self._templates = templates

    async def execute(self, payload: dict[str, Any]) -> UseCaseResult:
        """Process one webhook envelope.

        Returns:
            UseCaseResult with per-message outcomes and the number of
            receipts applied. Failures of individual events are logged and
            do not stop the others.
        """
        try:
            messages, statuses = parse_envelope(payload)
        except ValidationError as e:
            logger.warning(f"Invalid webhook envelope: {e.error_count()} validation errors")
            return UseCaseResult.error(code="invalid_payload", message=str(e))

        outcomes: list[WebhookOutcome] = []
        for message in messages:
            try:
                outcomes.append(await self.handle_message(message))
            except Exception as e:
                logger.error(f"Error processing inbound message {message.provider_message_id}: {e}", exc_info=True)
                outcomes.append(
                    WebhookOutcome(
                        provider_message_id=message.provider_message_id,
                        intent=Intent.NONE.value,
                        action="error",
                        error=str(e),
                    )
                )

        applied = 0
        for update in statuses:
            try:
                await self.handle_status(update)
                applied += 1
            except Exception as e:
                logger.warning(f"Failed to apply status {update.status} to {update.provider_message_id}: {e}")

        return UseCaseResult.ok(
            data={
                "messages": [o.to_dict() for o in outcomes],
                "statuses_applied": applied,
                "statuses_received": len(statuses),
            }
        )

    # =========================================================================
    # Delivery receipts
    # =========================================================================

    async def handle_status(self, update: StatusUpdate) -> LedgerEntry | None:
        status = RECEIPT_STATUSES.get(update.status.lower())
        if status is None:
            logger.info(f"Ignoring unknown delivery status '{update.status}' for {update.provider_message_id}")
            return None

        error_detail = json.dumps(update.errors, ensure_ascii=False) if update.errors else None
        logger.info(f"[STATUS] {update.provider_message_id}: {status.value}")
        return await self._ledger.apply_status_update(update.provider_message_id, status, error_detail)

    # =========================================================================
    # Inbound messages
    # =========================================================================

    async def handle_message(self, message: InboundMessage) -> WebhookOutcome:
        key = phone_key(message.from_phone)
        match = self._classifier.classify(message)

        if not match.intent.is_actionable:
            return await self._record_without_intent(message, key)

        appointment, resolved_by = await self._resolve_appointment(message, match, key)
        confirm = match.intent is Intent.CONFIRM

        write = await self._ledger.record_inbound(
            kind=MessageKind.CONFIRMATION if confirm else MessageKind.CANCELLATION,
            status=MessageStatus.CONFIRMED if confirm else MessageStatus.CANCELLED,
            phone_key=key,
            appointment_id=appointment.id if appointment else None,
            provider_event_id=message.provider_message_id,
            body=message.display_text,
            phone=message.from_phone,
        )
        outcome = WebhookOutcome(
            provider_message_id=message.provider_message_id,
            intent=match.intent.value,
            action="duplicate",
            appointment_id=appointment.id if appointment else None,
            resolved_by=resolved_by,
        )

        if not write.created:
            logger.info(f"[WEBHOOK] Duplicate event {message.provider_message_id}, already processed")
            return outcome

        if appointment is None:
            logger.info(f"[WEBHOOK] {match.intent.value} from {key} without a matching appointment")
            outcome.action = "unresolved"
        else:
            outcome.action = "confirmed" if confirm else "cancelled"
            outcome.error = await self._apply_transition(appointment, confirm)

        outcome.acknowledged = await self._acknowledge(message, key, appointment, confirm)
        return outcome

    async def _record_without_intent(self, message: InboundMessage, key: str) -> WebhookOutcome:
        logger.info(f"[WEBHOOK] No intent in {message.message_type} message from {key}")
        write = await self._ledger.record_inbound(
            kind=MessageKind.TEXT,
            status=MessageStatus.RECEIVED,
            phone_key=key,
            provider_event_id=message.provider_message_id,
            body=message.display_text,
            phone=message.from_phone,
        )
        return WebhookOutcome(
            provider_message_id=message.provider_message_id,
            intent=Intent.NONE.value,
            action="recorded" if write.created else "duplicate",
        )

    async def _resolve_appointment(
        self,
        message: InboundMessage,
        match: IntentMatch,
        key: str,
    ) -> tuple[Appointment | None, str | None]:
        """Find the appointment an intent refers to, most reliable source first."""
        if match.appointment_id is not None:
            appointment = await self._store.get_by_id(match.appointment_id)
            if appointment:
                return appointment, "payload"

        if message.context_id:
            original = await self._ledger.find_by_provider_message_id(message.context_id)
            if original and original.appointment_id is not None:
                appointment = await self._store.get_by_id(original.appointment_id)
                if appointment:
                    return appointment, "context"

        appointment = await self._store.get_latest_pending_by_phone(message.from_phone)
        if appointment:
            return appointment, "pending_by_phone"

        appointment_id = await self._ledger.latest_appointment_id_for_phone(key)
        if appointment_id is not None:
            appointment = await self._store.get_by_id(appointment_id)
            if appointment:
                return appointment, "ledger_history"

        return None, None

    async def _apply_transition(self, appointment: Appointment, confirm: bool) -> str | None:
        """Mutate the store. A failure leaves the ledger intent for reconciliation."""
        try:
            if confirm:
                await self._store.confirm(appointment.id)
                logger.info(f"[WEBHOOK] Appointment {appointment.id} confirmed")
            else:
                await self._store.cancel(appointment.id, CANCEL_REASON)
                logger.info(f"[WEBHOOK] Appointment {appointment.id} cancelled")
        except Exception as e:
            logger.error(
                f"[WEBHOOK] Store update failed for appointment {appointment.id}, left for reconciliation: {e}",
                exc_info=True,
            )
            return str(e)
        return None

    async def _acknowledge(
        self,
        message: InboundMessage,
        key: str,
        appointment: Appointment | None,
        confirm: bool,
    ) -> bool:
        text = self._templates.confirmation_ack(appointment) if confirm else self._templates.cancellation_ack(appointment)
        entry = LedgerEntry(
            kind=MessageKind.TEXT,
            status=MessageStatus.SENT,
            direction=Direction.OUTBOUND_ACK,
            appointment_id=appointment.id if appointment else None,
            phone=message.from_phone,
            phone_key=key,
            body=text,
        )
        try:
            result = await self._channel.send_text(message.from_phone, text)
        except ChannelError as e:
            logger.warning(f"[WEBHOOK] Acknowledgement to {key} failed: {e.code} {e.message}")
            entry.status = MessageStatus.FAILED
            entry.error_detail = e.to_detail()
            entry.retryable = False
            await self._record_ack(entry)
            return False

        entry.provider_message_id = result.provider_message_id
        await self._record_ack(entry)
        return True

    async def _record_ack(self, entry: LedgerEntry) -> None:
        try:
            await self._ledger.record_outbound(entry)
        except Exception as e:
            logger.error(
                f"[WEBHOOK] Acknowledgement to {entry.phone_key} ({entry.status.value}, "
                f"{entry.provider_message_id}) not recorded: {e}",
                exc_info=True,
            )
