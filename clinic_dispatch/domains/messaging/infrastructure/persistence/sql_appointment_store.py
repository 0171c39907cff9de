# ============================================================================
# SCOPE: INFRASTRUCTURE LAYER (Messaging)
# Description: SQLAlchemy implementation of the appointment store.
# ============================================================================
"""
SQL Appointment Store

Queries and flips flags on the scheduling system's `appointments` table.
Candidate selection for the schedulers can exclude appointments that
already have a send of that kind in the ledger through a NOT EXISTS
subquery. Failed sends belong to the retry job from then on.
"""

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import String, exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_dispatch.models.db import AppointmentModel, MessageLog

from ...domain import ATTEMPTED_SEND_STATUSES, Appointment, MessageKind, phone_variations
from .sql_message_ledger import ensure_utc

logger = logging.getLogger(__name__)

# Separators stripped from stored contacts before digit matching
_CONTACT_NOISE = (" ", "-", "(", ")", "+", ".", "/")

# Pending appointments older than this are not matched to inbound replies
PENDING_LOOKBACK = timedelta(days=1)


def _contact_digits(column):
    """SQL expression removing common punctuation from a contact column."""
    expression = func.coalesce(column, "", type_=String)
    for char in _CONTACT_NOISE:
        expression = func.replace(expression, char, "", type_=String)
    return expression


class AppointmentNotFoundError(LookupError):
    """The appointment does not exist in the scheduling system."""


class SqlAppointmentStore:
    """SQLAlchemy implementation of IAppointmentStore."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    def _to_entity(model: AppointmentModel) -> Appointment:
        return Appointment(
            id=model.id,
            patient_name=model.patient_name,
            contacts=model.patient_contacts,
            scheduled_at=ensure_utc(model.scheduled_at),
            procedure=model.procedure,
            confirmed=bool(model.confirmed),
            active=model.active is not False,
        )

    @staticmethod
    def _already_logged(kind: MessageKind):
        """NOT EXISTS clause: no attempted send of `kind` for the appointment."""
        return ~exists().where(
            MessageLog.appointment_id == AppointmentModel.id,
            MessageLog.kind == kind.value,
            MessageLog.status.in_([s.value for s in ATTEMPTED_SEND_STATUSES]),
        )

    async def get_by_id(self, appointment_id: int) -> Appointment | None:
        async with self._session_factory() as session:
            model = await session.get(AppointmentModel, appointment_id)
            return self._to_entity(model) if model else None

    async def get_latest_pending_by_phone(self, phone: str) -> Appointment | None:
        variations = phone_variations(phone)
        if not variations:
            return None

        digits = _contact_digits(AppointmentModel.patient_contacts)
        cutoff = datetime.now(UTC) - PENDING_LOOKBACK
        stmt = (
            select(AppointmentModel)
            .where(
                AppointmentModel.confirmed.is_(False),
                AppointmentModel.active.is_not(False),
                AppointmentModel.scheduled_at >= cutoff,
                or_(*[digits.contains(v, autoescape=True) for v in variations]),
            )
            .order_by(AppointmentModel.scheduled_at.asc())
            .limit(1)
        )
        async with self._session_factory() as session:
            model = (await session.execute(stmt)).scalar_one_or_none()
            return self._to_entity(model) if model else None

    async def confirm(self, appointment_id: int) -> None:
        now = datetime.now(UTC)
        async with self._session_factory() as session:
            result = await session.execute(
                update(AppointmentModel)
                .where(AppointmentModel.id == appointment_id)
                .values(confirmed=True, updated_at=now)
            )
            if result.rowcount == 0:
                await session.rollback()
                raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
            await session.commit()
        logger.info(f"Appointment {appointment_id} marked confirmed")

    async def cancel(self, appointment_id: int, reason: str) -> None:
        now = datetime.now(UTC)
        async with self._session_factory() as session:
            result = await session.execute(
                update(AppointmentModel)
                .where(AppointmentModel.id == appointment_id)
                .values(
                    confirmed=False,
                    active=False,
                    cancelled_at=now,
                    cancel_reason=(reason or "")[:255] or None,
                    updated_at=now,
                )
            )
            if result.rowcount == 0:
                await session.rollback()
                raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")
            await session.commit()
        logger.info(f"Appointment {appointment_id} cancelled ({reason})")

    async def list_due_for_dispatch(
        self,
        window_start: datetime,
        window_end: datetime,
        exclude_already_logged: bool = True,
        limit: int = 30,
    ) -> list[Appointment]:
        stmt = select(AppointmentModel).where(
            AppointmentModel.active.is_not(False),
            AppointmentModel.confirmed.is_(False),
            AppointmentModel.scheduled_at >= ensure_utc(window_start),
            AppointmentModel.scheduled_at < ensure_utc(window_end),
        )
        if exclude_already_logged:
            stmt = stmt.where(self._already_logged(MessageKind.TEMPLATE))
        stmt = stmt.order_by(AppointmentModel.scheduled_at.asc(), AppointmentModel.id.asc()).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [self._to_entity(m) for m in result.scalars().all()]

    async def list_due_for_reminder(
        self,
        window_start: datetime,
        window_end: datetime,
        require_confirmed: bool = False,
        exclude_already_logged: bool = True,
        limit: int = 40,
    ) -> list[Appointment]:
        stmt = select(AppointmentModel).where(
            AppointmentModel.active.is_not(False),
            AppointmentModel.scheduled_at >= ensure_utc(window_start),
            AppointmentModel.scheduled_at < ensure_utc(window_end),
        )
        if require_confirmed:
            stmt = stmt.where(AppointmentModel.confirmed.is_(True))
        if exclude_already_logged:
            stmt = stmt.where(self._already_logged(MessageKind.REMINDER))
        stmt = stmt.order_by(AppointmentModel.scheduled_at.asc(), AppointmentModel.id.asc()).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [self._to_entity(m) for m in result.scalars().all()]
