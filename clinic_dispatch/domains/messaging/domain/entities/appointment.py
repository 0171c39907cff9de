"""
Appointment Entity for the Messaging Domain

Read-only view of an appointment owned by the clinic scheduling system.
"""

from dataclasses import dataclass
from datetime import datetime

from ..value_objects.phone import pick_first_phone


@dataclass(frozen=True)
class Appointment:
    """
    Appointment as seen by the messaging service.

    `active` False means cancelled or removed; such appointments never
    receive further outbound dispatch.
    """

    id: int
    patient_name: str | None
    contacts: str | None
    scheduled_at: datetime
    procedure: str | None = None
    confirmed: bool = False
    active: bool = True

    @property
    def primary_phone(self) -> str | None:
        """First usable contact number in +E164 form."""
        return pick_first_phone(self.contacts)

    @property
    def is_pending(self) -> bool:
        """Active and still awaiting confirmation."""
        return self.active and not self.confirmed
