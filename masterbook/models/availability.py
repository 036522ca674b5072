# ===== masterbook/models/availability.py =====
from sqlalchemy import (
    Column, String, Integer, Time, Date, DateTime, ForeignKey,
    CheckConstraint, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from masterbook.models.base import Base
import uuid


class AvailabilityRule(Base):
    """Recurring weekly working hours, in the master's local time"""
    __tablename__ = "availability_rules"
    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="availability_rules_day_of_week"),
        CheckConstraint("start_time < end_time", name="availability_rules_time_order"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    master_id = Column(UUID(as_uuid=True), ForeignKey("masters.id", ondelete="CASCADE"), nullable=False, index=True)

    day_of_week = Column(Integer, nullable=False)  # 0=Sunday, 6=Saturday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_granularity_minutes = Column(Integer, nullable=False, default=30)

    def to_dict(self):
        return {
            "id": str(self.id),
            "day_of_week": self.day_of_week,
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "slot_granularity_minutes": self.slot_granularity_minutes,
        }


class AvailabilityWindow(Base):
    """Explicit working hours for one date; replaces the weekly rules for that date"""
    __tablename__ = "availability_windows"
    __table_args__ = (
        UniqueConstraint("master_id", "date", "start_time", "end_time", name="availability_windows_unique"),
        CheckConstraint("start_time < end_time", name="availability_windows_time_order"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    master_id = Column(UUID(as_uuid=True), ForeignKey("masters.id", ondelete="CASCADE"), nullable=False, index=True)

    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    def to_dict(self):
        return {
            "id": str(self.id),
            "date": self.date.isoformat(),
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
        }


class AvailabilityExclusion(Base):
    """A whole day off (holiday, vacation)"""
    __tablename__ = "availability_exclusions"
    __table_args__ = (
        UniqueConstraint("master_id", "date", name="availability_exclusions_unique"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    master_id = Column(UUID(as_uuid=True), ForeignKey("masters.id", ondelete="CASCADE"), nullable=False, index=True)

    date = Column(Date, nullable=False)
    reason = Column(String(255), nullable=True)

    def to_dict(self):
        return {
            "id": str(self.id),
            "date": self.date.isoformat(),
            "reason": self.reason,
        }


class MasterBlock(Base):
    """Manually blocked absolute interval (lunch, errand)"""
    __tablename__ = "master_blocks"
    __table_args__ = (
        CheckConstraint("start_at < end_at", name="master_blocks_time_order"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    master_id = Column(UUID(as_uuid=True), ForeignKey("masters.id", ondelete="CASCADE"), nullable=False, index=True)

    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)
    title = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def to_dict(self):
        return {
            "id": str(self.id),
            "start_at": self.start_at.isoformat(),
            "end_at": self.end_at.isoformat(),
            "title": self.title,
        }
