# ============================================================================
# SCOPE: APPLICATION LAYER (Messaging)
# Description: Use case for sending an operator free-text reply.
# ============================================================================
"""Send Operator Reply Use Case.

Free text is only deliverable inside the contact's session window; outside
it the reply is rejected with `session_expired` so the operator can fall
back to a template.
"""

import logging
from typing import TYPE_CHECKING

from ...domain import Direction, LedgerEntry, MessageKind, MessageStatus, phone_key
from ..dto import OperatorReplyRequest, UseCaseResult
from ..ports import ChannelError

if TYPE_CHECKING:
    from ..ports import IMessageLedger, IMessagingChannel
    from ..services import SessionWindowCalculator

logger = logging.getLogger(__name__)


class SendOperatorReplyUseCase:
    """Use case for replying to a conversation thread."""

    def __init__(
        self,
        ledger: "IMessageLedger",
        channel: "IMessagingChannel",
        session_window: "SessionWindowCalculator",
    ) -> None:
        self._ledger = ledger
        self._channel = channel
        self._window = session_window

    async def execute(self, request: OperatorReplyRequest) -> UseCaseResult:
        """Send the reply if the window is open.

        Returns:
            UseCaseResult with the recorded ledger entry, or an error with
            code `invalid_request`, `session_expired` or `channel_error`.
        """
        key = phone_key(request.phone_key)
        body = (request.body or "").strip()
        if not key or not body:
            return UseCaseResult.error(code="invalid_request", message="phone_key and body are required")

        if not await self._window.is_open(key):
            expires_at = await self._window.expires_at(key)
            logger.info(f"Operator reply to {key} rejected: session window closed (expired at {expires_at})")
            return UseCaseResult.error(
                code="session_expired",
                message="Session window is closed; send a template instead",
            )

        destination = f"+{key}"
        # Resolved before sending so nothing can fail between the send and its ledger row
        entry = LedgerEntry(
            kind=MessageKind.TEXT,
            status=MessageStatus.SENT,
            direction=Direction.OUTBOUND_OPERATOR,
            appointment_id=await self._ledger.latest_appointment_id_for_phone(key),
            phone=destination,
            phone_key=key,
            body=body,
        )

        try:
            result = await self._channel.send_text(destination, body)
        except ChannelError as e:
            logger.warning(f"Operator reply to {key} failed: {e.code} {e.message}")
            entry.status = MessageStatus.FAILED
            entry.error_detail = e.to_detail()
            entry.retryable = False
            await self._record(entry)
            return UseCaseResult.error(code="channel_error", message=e.message)

        entry.provider_message_id = result.provider_message_id
        entry = await self._record(entry)
        logger.info(f"Operator reply sent to {key} ({result.provider_message_id})")
        return UseCaseResult.ok(data=entry.to_dict())

    async def _record(self, entry: LedgerEntry) -> LedgerEntry:
        """Ledger write that never turns a provider outcome into a request failure."""
        try:
            return await self._ledger.record_outbound(entry)
        except Exception as e:
            logger.error(
                f"Operator reply to {entry.phone_key} ({entry.status.value}, {entry.provider_message_id}) "
                f"not recorded: {e}",
                exc_info=True,
            )
            return entry
