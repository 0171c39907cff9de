"""Database models."""

from clinic_dispatch.models.db.appointment import EXTERNAL_TABLES, AppointmentModel
from clinic_dispatch.models.db.base import Base, TimestampMixin
from clinic_dispatch.models.db.message_log import MessageLog

__all__ = [
    "EXTERNAL_TABLES",
    "AppointmentModel",
    "Base",
    "MessageLog",
    "TimestampMixin",
]
