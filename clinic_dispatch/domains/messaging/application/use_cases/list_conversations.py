# ============================================================================
# SCOPE: APPLICATION LAYER (Messaging)
# Description: Use cases for the conversation threads view.
# ============================================================================
"""Conversation threads derived from the ledger, grouped by phone key."""

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from ...domain import phone_key
from ..dto import UseCaseResult

if TYPE_CHECKING:
    from ..ports import IMessageLedger
    from ..services import SessionWindowCalculator

logger = logging.getLogger(__name__)


class ListConversationsUseCase:
    """Lists threads (most recent first) and the messages of one thread."""

    def __init__(self, ledger: "IMessageLedger", session_window: "SessionWindowCalculator") -> None:
        self._ledger = ledger
        self._window = session_window

    async def execute(self, limit: int = 50) -> UseCaseResult:
        now = datetime.now(UTC)
        sessions = await self._ledger.list_conversations(limit=limit)
        threads = []
        for session in sessions:
            thread = session.to_dict()
            thread["window_open"] = self._window.is_open_for(session, now)
            threads.append(thread)
        return UseCaseResult.ok(data={"conversations": threads, "total": len(threads)})

    async def messages(self, raw_phone_key: str, limit: int = 200) -> UseCaseResult:
        key = phone_key(raw_phone_key)
        if not key:
            return UseCaseResult.error(code="invalid_request", message="phone_key is required")

        entries = await self._ledger.conversation_messages(key, limit=limit)
        if not entries:
            return UseCaseResult.error(code="not_found", message=f"No conversation for {key}")

        return UseCaseResult.ok(
            data={
                "phone_key": key,
                "window_open": await self._window.is_open(key),
                "window_expires_at": _isoformat(await self._window.expires_at(key)),
                "messages": [e.to_dict() for e in entries],
            }
        )


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
