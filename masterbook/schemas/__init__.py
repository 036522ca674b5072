# masterbook/schemas/__init__.py
from .master import MasterSetupRequest, MasterProfileUpdate, MasterSettingsUpdate
from .catalog import ServiceCreate, ServiceUpdate
from .availability import (
    AvailabilityRuleCreate,
    AvailabilityRuleUpdate,
    AvailabilityWindowCreate,
    AvailabilityExclusionCreate,
    MasterBlockCreate,
    MasterBlockUpdate,
)
from .booking import (
    BookingCreateRequest,
    AdminBookingCreateRequest,
    RescheduleRequest,
    BookingStatusUpdate,
)
from .calendar import SyncMode, CalendarBindingUpdate
