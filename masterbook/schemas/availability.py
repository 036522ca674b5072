# masterbook/schemas/availability.py
from datetime import date as Date, datetime, time
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from masterbook.config.settings import get_settings

SLOT_STEP_MINUTES = get_settings().SLOT_STEP_MINUTES


class AvailabilityRuleCreate(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6, description="0=Sunday, 6=Saturday")
    start_time: time
    end_time: time
    slot_granularity_minutes: int = Field(30, ge=5, le=240)

    @field_validator("slot_granularity_minutes")
    @classmethod
    def granularity_on_booking_step(cls, v: int) -> int:
        if v % SLOT_STEP_MINUTES:
            raise ValueError(f"slot_granularity_minutes must be a multiple of {SLOT_STEP_MINUTES}")
        return v

    @field_validator("end_time")
    @classmethod
    def end_after_start(cls, v: time, info) -> time:
        start_time = info.data.get("start_time")
        if start_time and v <= start_time:
            raise ValueError("end_time must be after start_time")
        return v


class AvailabilityRuleUpdate(BaseModel):
    """Partial edit; the merged start/end order is checked by the service"""
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    slot_granularity_minutes: Optional[int] = Field(None, ge=5, le=240)

    @field_validator("slot_granularity_minutes")
    @classmethod
    def granularity_on_booking_step(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v % SLOT_STEP_MINUTES:
            raise ValueError(f"slot_granularity_minutes must be a multiple of {SLOT_STEP_MINUTES}")
        return v


class AvailabilityWindowCreate(BaseModel):
    date: Date
    start_time: time
    end_time: time

    @field_validator("end_time")
    @classmethod
    def end_after_start(cls, v: time, info) -> time:
        start_time = info.data.get("start_time")
        if start_time and v <= start_time:
            raise ValueError("end_time must be after start_time")
        return v


class AvailabilityExclusionCreate(BaseModel):
    date: Date
    reason: Optional[str] = Field(None, max_length=255)


class MasterBlockCreate(BaseModel):
    start_at: datetime
    end_at: datetime
    title: Optional[str] = Field(None, max_length=255)

    @field_validator("end_at")
    @classmethod
    def end_after_start(cls, v: datetime, info) -> datetime:
        start_at = info.data.get("start_at")
        if start_at and v <= start_at:
            raise ValueError("end_at must be after start_at")
        return v


class MasterBlockUpdate(BaseModel):
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    title: Optional[str] = Field(None, max_length=255)
