"""
SQLAlchemy mapping of the clinic's appointment table.

The table belongs to the scheduling system; this service only reads it and
flips the `confirmed` / `active` flags. It is excluded from migrations.
"""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from clinic_dispatch.models.db.base import Base

EXTERNAL_TABLES = frozenset({"appointments"})


class AppointmentModel(Base):
    """Appointment row as exposed by the scheduling system."""

    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    patient_name = Column(String(255), nullable=True)
    patient_contacts = Column(Text, nullable=True, comment="One or more raw phone strings")
    scheduled_at = Column(DateTime(timezone=True), nullable=False, index=True)
    procedure = Column(String(255), nullable=True)
    confirmed = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(String(255), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<AppointmentModel(id={self.id}, confirmed={self.confirmed}, active={self.active})>"
