# ============================================================================
# SCOPE: INFRASTRUCTURE LAYER (Messaging)
# Description: SQLAlchemy implementation of the message ledger.
# ============================================================================
"""
SQL Message Ledger

Idempotent upserts over `message_logs` keyed by `provider_message_id`,
using the dialect's INSERT ... ON CONFLICT (PostgreSQL in production,
SQLite in tests). Each operation runs in its own short session.
"""

import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_dispatch.models.db import MessageLog

from ...application.ports import LedgerWrite
from ...application.services import build_session
from ...domain import (
    ATTEMPTED_SEND_STATUSES,
    SUCCESSFUL_SEND_STATUSES,
    TERMINAL_STATUSES,
    ConversationSession,
    Direction,
    LedgerEntry,
    MessageKind,
    MessageStatus,
)
from ...domain.entities.ledger_entry import BODY_MAX_LENGTH, ERROR_DETAIL_MAX_LENGTH, truncate
from ...domain.value_objects.message_kind import RECEIPT_RANK

logger = logging.getLogger(__name__)

_ENUM_FIELDS = {"kind": MessageKind, "status": MessageStatus, "direction": Direction}
_UPDATABLE_FIELDS = frozenset(
    {
        "appointment_id",
        "phone",
        "phone_key",
        "provider_message_id",
        "kind",
        "template_name",
        "status",
        "direction",
        "body",
        "error_detail",
        "retry_count",
        "retryable",
        "next_retry_at",
        "last_attempt_at",
    }
)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Normalise a stored timestamp to tz-aware UTC (SQLite returns naive values)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _receipt_rank(column):
    """SQL rank of a receipt status, 0 for anything else."""
    return case({status.value: rank for status, rank in RECEIPT_RANK.items()}, value=column, else_=0)


def _value(field: str, value: Any) -> Any:
    """Column value for a domain field."""
    if field in _ENUM_FIELDS and value is not None:
        return _ENUM_FIELDS[field](value).value
    if field == "body":
        return truncate(value, BODY_MAX_LENGTH)
    if field == "error_detail":
        return truncate(value, ERROR_DETAIL_MAX_LENGTH)
    if isinstance(value, datetime):
        return ensure_utc(value)
    return value


class SqlMessageLedger:
    """
    SQLAlchemy implementation of IMessageLedger.

    Datetimes are written and returned as UTC.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # =========================================================================
    # Mapping helpers
    # =========================================================================

    @staticmethod
    def _to_entity(model: MessageLog) -> LedgerEntry:
        return LedgerEntry(
            id=model.id,
            appointment_id=model.appointment_id,
            phone=model.phone,
            phone_key=model.phone_key,
            provider_message_id=model.provider_message_id,
            kind=model.kind,
            template_name=model.template_name,
            status=model.status,
            direction=model.direction,
            body=model.body,
            error_detail=model.error_detail,
            retry_count=model.retry_count or 0,
            retryable=model.retryable is not False,
            next_retry_at=ensure_utc(model.next_retry_at),
            last_attempt_at=ensure_utc(model.last_attempt_at),
            created_at=ensure_utc(model.created_at),
            updated_at=ensure_utc(model.updated_at),
        )

    @staticmethod
    def _row_values(entry: LedgerEntry, now: datetime) -> dict[str, Any]:
        values = {field: _value(field, getattr(entry, field)) for field in _UPDATABLE_FIELDS}
        values["retry_count"] = max(0, entry.retry_count or 0)
        values["retryable"] = bool(entry.retryable)
        if entry.status in TERMINAL_STATUSES:
            values["next_retry_at"] = None
        values["created_at"] = now
        values["updated_at"] = now
        return values

    @staticmethod
    def _insert(session: AsyncSession):
        """Dialect specific INSERT supporting ON CONFLICT."""
        if session.bind.dialect.name == "postgresql":
            return postgresql.insert(MessageLog)
        return sqlite.insert(MessageLog)

    async def _get(self, session: AsyncSession, entry_id: int) -> LedgerEntry:
        model = await session.get(MessageLog, entry_id, populate_existing=True)
        return self._to_entity(model)

    # =========================================================================
    # Writes
    # =========================================================================

    async def record_outbound(self, entry: LedgerEntry) -> LedgerEntry:
        now = datetime.now(UTC)
        values = self._row_values(entry, now)

        async with self._session_factory() as session:
            if not entry.provider_message_id:
                model = MessageLog(**values)
                session.add(model)
                await session.commit()
                await session.refresh(model)
                return self._to_entity(model)

            stmt = self._insert(session).values(**values)
            excluded = stmt.excluded
            stmt = stmt.on_conflict_do_update(
                index_elements=[MessageLog.provider_message_id],
                set_={
                    # A late "sent" write must not undo a receipt that arrived first
                    "status": case(
                        (
                            and_(
                                _receipt_rank(excluded.status) > 0,
                                _receipt_rank(MessageLog.status) > _receipt_rank(excluded.status),
                            ),
                            MessageLog.status,
                        ),
                        else_=excluded.status,
                    ),
                    "kind": case((MessageLog.kind == MessageKind.STATUS.value, excluded.kind), else_=MessageLog.kind),
                    "direction": excluded.direction,
                    "appointment_id": func.coalesce(excluded.appointment_id, MessageLog.appointment_id),
                    "phone": func.coalesce(excluded.phone, MessageLog.phone),
                    "phone_key": func.coalesce(excluded.phone_key, MessageLog.phone_key),
                    "template_name": func.coalesce(excluded.template_name, MessageLog.template_name),
                    "body": func.coalesce(excluded.body, MessageLog.body),
                    "error_detail": excluded.error_detail,
                    "retry_count": case(
                        (excluded.retry_count > MessageLog.retry_count, excluded.retry_count),
                        else_=MessageLog.retry_count,
                    ),
                    "next_retry_at": excluded.next_retry_at,
                    "retryable": excluded.retryable,
                    "last_attempt_at": func.coalesce(excluded.last_attempt_at, MessageLog.last_attempt_at),
                    "updated_at": now,
                },
            ).returning(MessageLog.id)

            entry_id = (await session.execute(stmt)).scalar_one()
            await session.commit()
            return await self._get(session, entry_id)

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
        now = datetime.now(UTC)
        entry = LedgerEntry(
            kind=kind,
            status=status,
            direction=Direction.INBOUND,
            appointment_id=appointment_id,
            phone=phone,
            phone_key=phone_key,
            provider_message_id=provider_event_id,
            body=body,
        )
        values = self._row_values(entry, now)

        async with self._session_factory() as session:
            if not provider_event_id:
                model = MessageLog(**values)
                session.add(model)
                await session.commit()
                await session.refresh(model)
                return LedgerWrite(entry=self._to_entity(model), created=True)

            stmt = (
                self._insert(session)
                .values(**values)
                .on_conflict_do_nothing(index_elements=[MessageLog.provider_message_id])
                .returning(MessageLog.id)
            )
            entry_id = (await session.execute(stmt)).scalar_one_or_none()
            if entry_id is not None:
                await session.commit()
                return LedgerWrite(entry=await self._get(session, entry_id), created=True)

            # Replayed event: fill gaps only, keep the first classification
            await session.execute(
                update(MessageLog)
                .where(MessageLog.provider_message_id == provider_event_id)
                .values(
                    appointment_id=func.coalesce(MessageLog.appointment_id, appointment_id),
                    body=func.coalesce(MessageLog.body, values["body"]),
                    phone=func.coalesce(MessageLog.phone, phone),
                )
            )
            await session.commit()
            result = await session.execute(
                select(MessageLog)
                .where(MessageLog.provider_message_id == provider_event_id)
                .execution_options(populate_existing=True)
            )
            return LedgerWrite(entry=self._to_entity(result.scalar_one()), created=False)

    async def update_entry(self, entry_id: int, **fields: Any) -> LedgerEntry | None:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown ledger fields: {sorted(unknown)}")

        async with self._session_factory() as session:
            model = await session.get(MessageLog, entry_id)
            if model is None:
                logger.warning(f"Ledger entry {entry_id} not found for update")
                return None

            for field, value in fields.items():
                if field == "retry_count":
                    # Never decreases
                    value = max(model.retry_count or 0, int(value or 0))
                setattr(model, field, _value(field, value))

            if MessageStatus(model.status) in TERMINAL_STATUSES:
                model.next_retry_at = None
            model.updated_at = datetime.now(UTC)

            await session.commit()
            await session.refresh(model)
            return self._to_entity(model)

    async def apply_status_update(
        self,
        provider_message_id: str,
        status: MessageStatus,
        error_detail: str | None = None,
    ) -> LedgerEntry:
        status = MessageStatus(status)

        async with self._session_factory() as session:
            result = await session.execute(
                select(MessageLog).where(MessageLog.provider_message_id == provider_message_id)
            )
            model = result.scalar_one_or_none()

            if model is None:
                now = datetime.now(UTC)
                entry = LedgerEntry(
                    kind=MessageKind.STATUS,
                    status=status,
                    provider_message_id=provider_message_id,
                    error_detail=error_detail,
                )
                stmt = (
                    self._insert(session)
                    .values(**self._row_values(entry, now))
                    .on_conflict_do_nothing(index_elements=[MessageLog.provider_message_id])
                )
                await session.execute(stmt)
                await session.commit()
                result = await session.execute(
                    select(MessageLog).where(MessageLog.provider_message_id == provider_message_id)
                )
                return self._to_entity(result.scalar_one())

            current = MessageStatus(model.status)
            if status is not MessageStatus.FAILED and current in RECEIPT_RANK and status in RECEIPT_RANK:
                if RECEIPT_RANK[status] <= RECEIPT_RANK[current]:
                    logger.debug(f"Ignoring {status.value} receipt for {provider_message_id}, already {current.value}")
                    return self._to_entity(model)

            model.status = status.value
            if error_detail is not None:
                model.error_detail = truncate(error_detail, ERROR_DETAIL_MAX_LENGTH)
            if status in TERMINAL_STATUSES:
                model.next_retry_at = None
            model.updated_at = datetime.now(UTC)

            await session.commit()
            await session.refresh(model)
            return self._to_entity(model)

    # =========================================================================
    # Queries
    # =========================================================================

    async def find_for_retry(
        self,
        kinds: Sequence[MessageKind],
        statuses: Sequence[MessageStatus],
        max_retry_count: int,
        limit: int,
        lookback_minutes: int | None = None,
        now: datetime | None = None,
    ) -> list[LedgerEntry]:
        now = ensure_utc(now) or datetime.now(UTC)
        stmt = select(MessageLog).where(
            MessageLog.kind.in_([MessageKind(k).value for k in kinds]),
            MessageLog.status.in_([MessageStatus(s).value for s in statuses]),
            MessageLog.retry_count < max_retry_count,
            MessageLog.retryable.is_(True),
            (MessageLog.next_retry_at.is_(None)) | (MessageLog.next_retry_at <= now),
        )
        if lookback_minutes:
            stmt = stmt.where(MessageLog.created_at >= now - timedelta(minutes=lookback_minutes))
        stmt = stmt.order_by(
            func.coalesce(MessageLog.last_attempt_at, MessageLog.created_at).asc(),
            MessageLog.id.asc(),
        ).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [self._to_entity(m) for m in result.scalars().all()]

    async def find_recent(
        self,
        kinds: Sequence[MessageKind] | None = None,
        statuses: Sequence[MessageStatus] | None = None,
        lookback_minutes: int | None = None,
        limit: int = 100,
    ) -> list[LedgerEntry]:
        stmt = select(MessageLog)
        if kinds:
            stmt = stmt.where(MessageLog.kind.in_([MessageKind(k).value for k in kinds]))
        if statuses:
            stmt = stmt.where(MessageLog.status.in_([MessageStatus(s).value for s in statuses]))
        if lookback_minutes:
            since = datetime.now(UTC) - timedelta(minutes=lookback_minutes)
            stmt = stmt.where(MessageLog.created_at >= since)
        stmt = stmt.order_by(MessageLog.created_at.desc(), MessageLog.id.desc()).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [self._to_entity(m) for m in result.scalars().all()]

    async def has_entries_between(
        self,
        kind: MessageKind,
        statuses: Sequence[MessageStatus],
        start: datetime,
        end: datetime,
    ) -> bool:
        stmt = (
            select(MessageLog.id)
            .where(
                MessageLog.kind == MessageKind(kind).value,
                MessageLog.status.in_([MessageStatus(s).value for s in statuses]),
                MessageLog.created_at >= ensure_utc(start),
                MessageLog.created_at < ensure_utc(end),
            )
            .limit(1)
        )
        async with self._session_factory() as session:
            return (await session.execute(stmt)).first() is not None

    async def latest_status_for(self, appointment_id: int) -> LedgerEntry | None:
        stmt = (
            select(MessageLog)
            .where(MessageLog.appointment_id == appointment_id)
            .order_by(MessageLog.updated_at.desc(), MessageLog.id.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            model = (await session.execute(stmt)).scalar_one_or_none()
            return self._to_entity(model) if model else None

    async def latest_statuses_for(self, appointment_ids: Sequence[int]) -> dict[int, LedgerEntry]:
        if not appointment_ids:
            return {}
        stmt = (
            select(MessageLog)
            .where(MessageLog.appointment_id.in_(list(appointment_ids)))
            .order_by(MessageLog.appointment_id, MessageLog.updated_at.desc(), MessageLog.id.desc())
        )
        latest: dict[int, LedgerEntry] = {}
        async with self._session_factory() as session:
            for model in (await session.execute(stmt)).scalars():
                if model.appointment_id not in latest:
                    latest[model.appointment_id] = self._to_entity(model)
        return latest

    async def appointments_with_successful(self, kind: MessageKind, appointment_ids: Sequence[int]) -> set[int]:
        return await self._appointments_with(kind, appointment_ids, SUCCESSFUL_SEND_STATUSES)

    async def appointments_with_attempts(self, kind: MessageKind, appointment_ids: Sequence[int]) -> set[int]:
        return await self._appointments_with(kind, appointment_ids, ATTEMPTED_SEND_STATUSES)

    async def _appointments_with(
        self,
        kind: MessageKind,
        appointment_ids: Sequence[int],
        statuses: frozenset[MessageStatus],
    ) -> set[int]:
        if not appointment_ids:
            return set()
        stmt = (
            select(MessageLog.appointment_id)
            .where(
                MessageLog.kind == MessageKind(kind).value,
                MessageLog.status.in_([s.value for s in statuses]),
                MessageLog.appointment_id.in_(list(appointment_ids)),
            )
            .distinct()
        )
        async with self._session_factory() as session:
            return set((await session.execute(stmt)).scalars().all())

    async def find_by_provider_message_id(self, provider_message_id: str) -> LedgerEntry | None:
        stmt = select(MessageLog).where(MessageLog.provider_message_id == provider_message_id)
        async with self._session_factory() as session:
            model = (await session.execute(stmt)).scalar_one_or_none()
            return self._to_entity(model) if model else None

    async def latest_appointment_id_for_phone(self, phone_key: str) -> int | None:
        stmt = (
            select(MessageLog.appointment_id)
            .where(MessageLog.phone_key == phone_key, MessageLog.appointment_id.is_not(None))
            .order_by(MessageLog.created_at.desc(), MessageLog.id.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def last_message_at(self, phone_key: str, direction: Direction) -> datetime | None:
        stmt = select(func.max(MessageLog.created_at)).where(
            MessageLog.phone_key == phone_key,
            MessageLog.direction == Direction(direction).value,
        )
        async with self._session_factory() as session:
            return ensure_utc((await session.execute(stmt)).scalar_one_or_none())

    async def list_conversations(self, limit: int = 50) -> list[ConversationSession]:
        last_at = func.max(MessageLog.created_at).label("last_at")
        keys_stmt = (
            select(MessageLog.phone_key, last_at)
            .where(MessageLog.phone_key.is_not(None), MessageLog.phone_key != "")
            .group_by(MessageLog.phone_key)
            .order_by(last_at.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            keys = [row.phone_key for row in (await session.execute(keys_stmt)).all()]
            if not keys:
                return []
            result = await session.execute(select(MessageLog).where(MessageLog.phone_key.in_(keys)))
            grouped: dict[str, list[LedgerEntry]] = {key: [] for key in keys}
            for model in result.scalars():
                grouped[model.phone_key].append(self._to_entity(model))

        return [build_session(key, grouped[key]) for key in keys]

    async def conversation_messages(self, phone_key: str, limit: int = 200) -> list[LedgerEntry]:
        stmt = (
            select(MessageLog)
            .where(MessageLog.phone_key == phone_key)
            .order_by(MessageLog.created_at.desc(), MessageLog.id.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            models = (await session.execute(stmt)).scalars().all()
        return [self._to_entity(m) for m in reversed(models)]
