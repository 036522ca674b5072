# ===== masterbook/models/calendar_sync.py =====
from sqlalchemy import Column, String, DateTime, LargeBinary, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from masterbook.models.base import Base
import uuid


class CalendarSyncBinding(Base):
    """OAuth link between a master and an external calendar"""
    __tablename__ = "calendar_sync_bindings"
    __table_args__ = (
        UniqueConstraint("master_id", "provider", name="calendar_sync_bindings_unique"),
        CheckConstraint("sync_mode IN ('push', 'hybrid')", name="calendar_sync_bindings_mode"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    master_id = Column(UUID(as_uuid=True), ForeignKey("masters.id", ondelete="CASCADE"), nullable=False)

    provider = Column(String(20), nullable=False, default="google")

    # OAuth tokens, Fernet encrypted
    access_token_encrypted = Column(LargeBinary, nullable=False)
    refresh_token_encrypted = Column(LargeBinary, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    scope = Column(String(512), nullable=True)

    # push: bookings are written out only; hybrid: external busy times also block slots
    sync_mode = Column(String(10), nullable=False, default="push")
    external_calendar_id = Column(String(255), nullable=False, default="primary")
    last_sync_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def to_dict(self):
        """Status view, never exposes tokens"""
        return {
            "provider": self.provider,
            "sync_mode": self.sync_mode,
            "external_calendar_id": self.external_calendar_id,
            "token_expires_at": self.token_expires_at.isoformat() if self.token_expires_at else None,
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
        }


class ExternalEventMapping(Base):
    """Which remote event mirrors a booking, and the content hash last pushed to it"""
    __tablename__ = "external_event_mappings"
    __table_args__ = (
        UniqueConstraint("booking_id", "provider", name="external_event_mappings_unique"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_id = Column(UUID(as_uuid=True), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    provider = Column(String(20), nullable=False, default="google")
    external_event_id = Column(String(1024), nullable=False)
    last_pushed_hash = Column(String(64), nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
