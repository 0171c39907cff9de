# ============================================================================
# SCOPE: APPLICATION LAYER (Messaging)
# Description: Appointment store port (DIP compliant).
# ============================================================================
"""Appointment Store Port.

Narrow query/command interface over the clinic's authoritative appointment
state. All confirm/cancel mutations go through here.
"""

from datetime import datetime
from typing import Protocol, runtime_checkable

from ...domain import Appointment


@runtime_checkable
class IAppointmentStore(Protocol):
    """Interface for the appointment store.

    Implementations: SqlAppointmentStore
    """

    async def get_by_id(self, appointment_id: int) -> Appointment | None:
        ...

    async def get_latest_pending_by_phone(self, phone: str) -> Appointment | None:
        """Earliest upcoming active, unconfirmed appointment of a contact."""
        ...

    async def confirm(self, appointment_id: int) -> None:
        """Set confirmed. Raises if the write fails."""
        ...

    async def cancel(self, appointment_id: int, reason: str) -> None:
        """Set inactive and unconfirmed (soft delete)."""
        ...

    async def list_due_for_dispatch(
        self,
        window_start: datetime,
        window_end: datetime,
        exclude_already_logged: bool = True,
        limit: int = 30,
    ) -> list[Appointment]:
        """Active, unconfirmed appointments in [window_start, window_end).

        With `exclude_already_logged`, appointments that already have a
        successful template send are left out.
        """
        ...

    async def list_due_for_reminder(
        self,
        window_start: datetime,
        window_end: datetime,
        require_confirmed: bool = False,
        exclude_already_logged: bool = True,
        limit: int = 40,
    ) -> list[Appointment]:
        """Active appointments in the window without a successful reminder."""
        ...
