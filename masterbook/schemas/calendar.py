# masterbook/schemas/calendar.py
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class SyncMode(str, Enum):
    PUSH = "push"
    HYBRID = "hybrid"


class CalendarBindingUpdate(BaseModel):
    sync_mode: Optional[SyncMode] = None
    external_calendar_id: Optional[str] = Field(None, min_length=1, max_length=255)
