"""SQLAlchemy persistence for the messaging domain."""

from .sql_appointment_store import AppointmentNotFoundError, SqlAppointmentStore
from .sql_message_ledger import SqlMessageLedger, ensure_utc

__all__ = ["AppointmentNotFoundError", "SqlAppointmentStore", "SqlMessageLedger", "ensure_utc"]
