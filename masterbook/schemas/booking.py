# masterbook/schemas/booking.py
from datetime import datetime
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel, Field, model_validator

from masterbook.models.booking import BookingStatus


class BookingCreateRequest(BaseModel):
    """Client booking through the public link"""
    service_id: Optional[UUID] = None
    service_ids: Optional[List[UUID]] = Field(None, min_length=1, max_length=5)
    start_at: datetime = Field(..., description="Service start, ISO-8601 instant")
    client_note: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def require_service(self):
        if not self.service_ids and not self.service_id:
            raise ValueError("service_id or service_ids is required")
        return self

    @property
    def resolved_service_ids(self) -> List[UUID]:
        return list(self.service_ids) if self.service_ids else [self.service_id]


class AdminBookingCreateRequest(BookingCreateRequest):
    """Booking entered by the master for an existing client"""
    client_id: UUID
    status: BookingStatus = BookingStatus.CONFIRMED
    master_note: Optional[str] = Field(None, max_length=1000)


class RescheduleRequest(BaseModel):
    new_start_at: datetime


class BookingStatusUpdate(BaseModel):
    status: Optional[BookingStatus] = None
    master_note: Optional[str] = Field(None, max_length=1000)
