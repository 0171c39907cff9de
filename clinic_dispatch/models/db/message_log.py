"""
SQLAlchemy model for the message ledger.

Table `message_logs`: one row per outbound attempt, inbound intent or
delivery receipt. Rows are updated in place, never deleted.
"""

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text

from clinic_dispatch.models.db.base import Base, TimestampMixin


class MessageLog(Base, TimestampMixin):
    """
    Ledger row.

    `provider_message_id` is the idempotency key: a second write with the
    same id updates the existing row.
    """

    __tablename__ = "message_logs"
    __table_args__ = (
        Index("idx_message_logs_created_at", "created_at"),
        Index("idx_message_logs_retry", "status", "next_retry_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    appointment_id = Column(
        Integer,
        nullable=True,
        index=True,
        comment="Appointment the entry refers to, null until resolved",
    )
    phone = Column(String(32), nullable=True, comment="Contact as sent (+E164 when normalised)")
    phone_key = Column(
        String(32),
        nullable=True,
        index=True,
        comment="Digits-only contact, conversation identity",
    )
    provider_message_id = Column(
        String(255),
        nullable=True,
        unique=True,
        comment="Provider message/event id (unique when present)",
    )

    kind = Column(String(32), nullable=False, comment="template, reminder, text, confirmation, cancellation, status")
    template_name = Column(String(255), nullable=True)
    status = Column(String(32), nullable=False, index=True)
    direction = Column(String(32), nullable=False, default="outbound")

    body = Column(Text, nullable=True, comment="Truncated free text")
    error_detail = Column(Text, nullable=True, comment="Truncated structured provider error")

    retry_count = Column(Integer, nullable=False, default=0)
    retryable = Column(
        Boolean,
        nullable=False,
        default=True,
        comment="False for permanent failures, which the retry job never picks up",
    )
    next_retry_at = Column(DateTime(timezone=True), nullable=True)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<MessageLog(id={self.id}, kind='{self.kind}', status='{self.status}')>"
