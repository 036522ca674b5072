# ===== masterbook/models/reminder.py =====
from sqlalchemy import Column, Boolean, DateTime, ForeignKey, UniqueConstraint, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from masterbook.models.base import Base
import uuid


class BookingReminder(Base):
    """One scheduled client reminder. `sent` doubles as the delivery claim flag."""
    __tablename__ = "booking_reminders"
    __table_args__ = (
        UniqueConstraint("booking_id", "remind_at", name="booking_reminders_unique"),
        Index("ix_booking_reminders_due", "sent", "remind_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_id = Column(UUID(as_uuid=True), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    remind_at = Column(DateTime(timezone=True), nullable=False)
    sent = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<BookingReminder(booking_id={self.booking_id}, remind_at={self.remind_at}, sent={self.sent})>"
