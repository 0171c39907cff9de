# ============================================================================
# SCOPE: APPLICATION LAYER (Messaging)
# Description: Message ledger port (DIP compliant).
# ============================================================================
"""Message Ledger Port.

The ledger is the single source of truth for "was this already sent,
confirmed or cancelled". Writes keyed by a provider id are idempotent
upserts; the unique key is the serialization point for concurrent
webhook deliveries.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from ...domain import (
    ConversationSession,
    Direction,
    LedgerEntry,
    MessageKind,
    MessageStatus,
)


@dataclass(frozen=True)
class LedgerWrite:
    """Outcome of an upsert: the stored entry and whether it was new."""

    entry: LedgerEntry
    created: bool


@runtime_checkable
class IMessageLedger(Protocol):
    """Interface for the message ledger.

    Implementations: SqlMessageLedger
    """

    async def record_outbound(self, entry: LedgerEntry) -> LedgerEntry:
        """Upsert an outbound attempt keyed by provider_message_id.

        Entries without a provider id are always inserted.
        """
        ...

    async def record_inbound(
        self,
        kind: MessageKind,
        status: MessageStatus,
        phone_key: str,
        appointment_id: int | None = None,
        provider_event_id: str | None = None,
        body: str | None = None,
        phone: str | None = None,
    ) -> LedgerWrite:
        """Upsert an inbound event keyed by provider_event_id.

        `created` is False when the event id was already recorded.
        """
        ...

    async def update_entry(self, entry_id: int, **fields: Any) -> LedgerEntry | None:
        """Mutate one entry in place. retry_count never decreases."""
        ...

    async def apply_status_update(
        self,
        provider_message_id: str,
        status: MessageStatus,
        error_detail: str | None = None,
    ) -> LedgerEntry:
        """Apply a delivery receipt; unknown ids create a `status` row."""
        ...

    async def find_for_retry(
        self,
        kinds: Sequence[MessageKind],
        statuses: Sequence[MessageStatus],
        max_retry_count: int,
        limit: int,
        lookback_minutes: int | None = None,
        now: datetime | None = None,
    ) -> list[LedgerEntry]:
        """Entries due for another attempt, oldest attempt first."""
        ...

    async def find_recent(
        self,
        kinds: Sequence[MessageKind] | None = None,
        statuses: Sequence[MessageStatus] | None = None,
        lookback_minutes: int | None = None,
        limit: int = 100,
    ) -> list[LedgerEntry]:
        """Most recent entries first."""
        ...

    async def has_entries_between(
        self,
        kind: MessageKind,
        statuses: Sequence[MessageStatus],
        start: datetime,
        end: datetime,
    ) -> bool:
        """Whether any matching entry was created in [start, end)."""
        ...

    async def latest_status_for(self, appointment_id: int) -> LedgerEntry | None:
        """Most recently updated entry of an appointment."""
        ...

    async def latest_statuses_for(self, appointment_ids: Sequence[int]) -> dict[int, LedgerEntry]:
        """Most recently updated entry per appointment."""
        ...

    async def appointments_with_successful(
        self,
        kind: MessageKind,
        appointment_ids: Sequence[int],
    ) -> set[int]:
        """Subset of ids that already have a successful send of `kind`."""
        ...

    async def appointments_with_attempts(
        self,
        kind: MessageKind,
        appointment_ids: Sequence[int],
    ) -> set[int]:
        """Subset of ids with a send of `kind` that succeeded or is still owned by the retry job."""
        ...

    async def find_by_provider_message_id(self, provider_message_id: str) -> LedgerEntry | None:
        ...

    async def latest_appointment_id_for_phone(self, phone_key: str) -> int | None:
        """Appointment referenced by the newest entry of a contact."""
        ...

    async def last_message_at(self, phone_key: str, direction: Direction) -> datetime | None:
        ...

    async def list_conversations(self, limit: int = 50) -> list[ConversationSession]:
        """Threads grouped by phone key, most recent first."""
        ...

    async def conversation_messages(self, phone_key: str, limit: int = 200) -> list[LedgerEntry]:
        """Entries of one thread, oldest first."""
        ...
