# masterbook/models/master.py
"""
Master (service provider) profile and per-master booking settings
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import secrets
import uuid
from masterbook.models.base import Base


def generate_booking_slug() -> str:
    """Short URL-safe id for the public booking link"""
    return secrets.token_urlsafe(9)


def generate_feed_token() -> str:
    return secrets.token_urlsafe(32)


class Master(Base):
    __tablename__ = "masters"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )

    display_name = Column(String(200), nullable=False)
    booking_slug = Column(String(64), nullable=False, unique=True, index=True, default=generate_booking_slug)
    timezone = Column(String(64), nullable=False, default="UTC")  # IANA zone name

    # Clients cannot cancel or reschedule closer than this to the start
    cancel_policy_hours = Column(Integer, nullable=False, default=24)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("User", lazy="joined")
    settings = relationship("MasterSettings", uselist=False, back_populates="master", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Master(id={self.id}, slug={self.booking_slug})>"

    def to_dict(self):
        """Public profile"""
        return {
            "id": str(self.id),
            "display_name": self.display_name,
            "timezone": self.timezone,
            "booking_slug": self.booking_slug,
            "cancel_policy_hours": self.cancel_policy_hours,
        }


class MasterSettings(Base):
    """Reminder, notice and discount settings. A row is created lazily on first read."""
    __tablename__ = "master_settings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    master_id = Column(
        UUID(as_uuid=True),
        ForeignKey("masters.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )

    reminder_hours = Column(JSON, nullable=False, default=lambda: [24, 2])
    quiet_hours_start = Column(String(5), nullable=True)  # "HH:MM" local
    quiet_hours_end = Column(String(5), nullable=True)
    first_visit_discount_percent = Column(Integer, nullable=False, default=15)
    min_booking_notice_minutes = Column(Integer, nullable=False, default=60)

    # Read-only ICS feed for Apple Calendar and other subscribers
    apple_calendar_enabled = Column(Boolean, nullable=False, default=False)
    apple_calendar_token = Column(String(128), nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    master = relationship("Master", back_populates="settings")

    def to_dict(self):
        return {
            "reminder_hours": list(self.reminder_hours or []),
            "quiet_hours_start": self.quiet_hours_start,
            "quiet_hours_end": self.quiet_hours_end,
            "first_visit_discount_percent": self.first_visit_discount_percent,
            "min_booking_notice_minutes": self.min_booking_notice_minutes,
            "apple_calendar_enabled": self.apple_calendar_enabled,
            "apple_calendar_token": self.apple_calendar_token,
        }
