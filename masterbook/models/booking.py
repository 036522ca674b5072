# ===== masterbook/models/booking.py =====
from sqlalchemy import (
    Column, String, Text, Integer, Numeric, DateTime, ForeignKey, JSON,
    CheckConstraint, DDL, event
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from masterbook.models.base import Base
import enum
import uuid


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    CANCELED = "canceled"


class BookingSource(str, enum.Enum):
    CLIENT_LINK = "client_link"
    ADMIN_CREATED = "admin_created"


ACTIVE_STATUSES = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)
TERMINAL_STATUSES = (
    BookingStatus.COMPLETED.value,
    BookingStatus.NO_SHOW.value,
    BookingStatus.CANCELED.value,
)

NO_OVERLAP_CONSTRAINT = "bookings_no_overlap_per_master"


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("start_at < end_at", name="bookings_time_order"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'completed', 'no_show', 'canceled')",
            name="bookings_status_values"
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # References
    master_id = Column(UUID(as_uuid=True), ForeignKey("masters.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    service_id = Column(UUID(as_uuid=True), ForeignKey("services.id"), nullable=False)
    extra_service_ids = Column(JSON, nullable=False, default=list)  # ordered, after the primary service

    # Absolute interval of the service itself (buffers are not stored)
    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)
    source = Column(String(20), nullable=False, default=BookingSource.CLIENT_LINK.value)

    client_note = Column(Text, nullable=True)
    master_note = Column(Text, nullable=True)

    # Pricing snapshot at booking time
    service_price = Column(Numeric(10, 2), nullable=True)
    discount_percent = Column(Integer, nullable=False, default=0)
    final_price = Column(Numeric(10, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    canceled_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    master = relationship("Master", lazy="joined")
    client = relationship("User", lazy="joined")
    service = relationship("Service", lazy="joined")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def all_service_ids(self):
        return [str(self.service_id)] + [str(s) for s in (self.extra_service_ids or [])]

    def __repr__(self):
        return f"<Booking(id={self.id}, master_id={self.master_id}, start_at={self.start_at}, status={self.status})>"

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            "id": str(self.id),
            "master_id": str(self.master_id),
            "client_id": str(self.client_id),
            "service_id": str(self.service_id),
            "service_ids": self.all_service_ids,
            "service_name": self.service.name if self.service else None,
            "client_name": self.client.name if self.client else None,
            "start_at": self.start_at.isoformat() if self.start_at else None,
            "end_at": self.end_at.isoformat() if self.end_at else None,
            "status": self.status,
            "source": self.source,
            "client_note": self.client_note,
            "master_note": self.master_note,
            "service_price": float(self.service_price) if self.service_price is not None else None,
            "discount_percent": self.discount_percent,
            "final_price": float(self.final_price) if self.final_price is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "canceled_at": self.canceled_at.isoformat() if self.canceled_at else None,
        }


# Two non-canceled bookings of one master may never overlap. The database is
# the only authority for this; application checks only shape the error message.
event.listen(
    Booking.__table__,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    Booking.__table__,
    "after_create",
    DDL(
        f"ALTER TABLE bookings ADD CONSTRAINT {NO_OVERLAP_CONSTRAINT} "
        "EXCLUDE USING gist (master_id WITH =, tstzrange(start_at, end_at, '[)') WITH &&) "
        "WHERE (status <> 'canceled')"
    ).execute_if(dialect="postgresql"),
)
