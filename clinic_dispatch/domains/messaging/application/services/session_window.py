# ============================================================================
# SCOPE: APPLICATION LAYER (Messaging)
# Description: Session window calculator over ledger data.
# ============================================================================
"""Session Window Calculator.

Free-text messages are only accepted by the provider while the contact's
reply window is open: `now - last_inbound_at <= window`. Without any
inbound entry the window is closed.
"""

from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from ...domain import ConversationSession, Direction, LedgerEntry

if TYPE_CHECKING:
    from ..ports import IMessageLedger

DEFAULT_WINDOW = timedelta(hours=24)


def is_window_open(
    last_inbound_at: datetime | None,
    now: datetime,
    window: timedelta = DEFAULT_WINDOW,
) -> bool:
    """Pure window check. The boundary itself counts as open."""
    if last_inbound_at is None:
        return False
    return (now - last_inbound_at) <= window


def build_session(phone_key: str, entries: Iterable[LedgerEntry]) -> ConversationSession:
    """Derive the session timestamps from the entries of one phone key."""
    ordered = sorted((e for e in entries if e.created_at is not None), key=lambda e: e.created_at)

    last_inbound: datetime | None = None
    last_outbound: datetime | None = None
    for entry in ordered:
        if entry.is_inbound:
            last_inbound = entry.created_at
        else:
            last_outbound = entry.created_at

    latest = ordered[-1] if ordered else None
    appointment_id = next((e.appointment_id for e in reversed(ordered) if e.appointment_id is not None), None)

    candidates = [s for s in (last_inbound, last_outbound) if s is not None]
    return ConversationSession(
        phone_key=phone_key,
        last_inbound_at=last_inbound,
        last_outbound_at=last_outbound,
        last_message_at=max(candidates) if candidates else None,
        last_message_preview=latest.body if latest else None,
        message_count=len(ordered),
        appointment_id=appointment_id,
    )


class SessionWindowCalculator:
    """Answers "may we send free text to this contact right now?"."""

    def __init__(self, ledger: "IMessageLedger", window: timedelta = DEFAULT_WINDOW) -> None:
        self._ledger = ledger
        self.window = window

    def is_open_for(self, session: ConversationSession, now: datetime | None = None) -> bool:
        return is_window_open(session.last_inbound_at, now or datetime.now(UTC), self.window)

    async def is_open(self, phone_key: str, now: datetime | None = None) -> bool:
        """Check the window of `phone_key` against the ledger."""
        last_inbound = await self._ledger.last_message_at(phone_key, Direction.INBOUND)
        return is_window_open(last_inbound, now or datetime.now(UTC), self.window)

    async def expires_at(self, phone_key: str) -> datetime | None:
        last_inbound = await self._ledger.last_message_at(phone_key, Direction.INBOUND)
        if last_inbound is None:
            return None
        return last_inbound + self.window
