# masterbook/schemas/master.py
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from masterbook.utils.time_windows import get_zone, parse_clock
from masterbook.services.booking.errors import InvalidTimeFormat


class MasterSetupRequest(BaseModel):
    """Create (or update) the master profile of the current user"""
    display_name: str = Field(..., min_length=1, max_length=200)
    timezone: str = Field("UTC", description="IANA timezone, e.g. Europe/Berlin")
    cancel_policy_hours: int = Field(24, ge=0, le=720)

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, v: str) -> str:
        try:
            get_zone(v)
        except InvalidTimeFormat as exc:
            raise ValueError(exc.message)
        return v


class MasterProfileUpdate(BaseModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=200)
    timezone: Optional[str] = None
    cancel_policy_hours: Optional[int] = Field(None, ge=0, le=720)

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        try:
            get_zone(v)
        except InvalidTimeFormat as exc:
            raise ValueError(exc.message)
        return v


class MasterSettingsUpdate(BaseModel):
    """Partial update; quiet hours are always written (null clears them)"""
    reminder_hours: Optional[List[int]] = Field(None, min_length=1, max_length=4)
    quiet_hours_start: Optional[str] = None
    quiet_hours_end: Optional[str] = None
    first_visit_discount_percent: Optional[int] = Field(None, ge=0, le=90)
    min_booking_notice_minutes: Optional[int] = Field(None, ge=0, le=1440)

    @field_validator("reminder_hours")
    @classmethod
    def reminder_range(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        if v is None:
            return v
        if any(h < 1 or h > 168 for h in v):
            raise ValueError("reminder_hours values must be integers from 1 to 168")
        return sorted(set(v), reverse=True)

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def clock_format(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        try:
            return parse_clock(v).strftime("%H:%M")
        except InvalidTimeFormat as exc:
            raise ValueError(exc.message)
