# ============================================================================
# FILE: masterbook/api/v1/dashboard/calendar.py
# Schedule view, Google Calendar connection and manual sync
# IMPORTANT: Specific routes MUST come before parameterized routes
# ============================================================================
import json
import logging
from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse
from sqlalchemy.orm import Session

from masterbook.api.dependencies import get_current_master
from masterbook.config.database import get_db
from masterbook.config.redis import RedisKeys, get_redis
from masterbook.models.master import Master
from masterbook.schemas.calendar import CalendarBindingUpdate
from masterbook.services.availability.availability_service import AvailabilityService
from masterbook.services.booking.booking_service import Actor, BookingService
from masterbook.services.calendar.google_calendar_service import CalendarNotConnected, GoogleCalendarService
from masterbook.utils.time_windows import to_iso, utc_now

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/calendar")

OAUTH_RESULT_TTL_SECONDS = 300


# ========== HELPER FUNCTIONS FOR REDIS ==========

def _oauth_result_key(master_id) -> str:
    return RedisKeys.CALENDAR_OAUTH_RESULT.format(master_id=master_id)


async def store_oauth_result(master_id, data: dict):
    """Keep the callback outcome for 5 minutes so the dashboard can poll it"""
    redis_client = await get_redis()
    await redis_client.setex(_oauth_result_key(master_id), OAUTH_RESULT_TTL_SECONDS, json.dumps(data))


async def pop_oauth_result(master_id) -> dict | None:
    redis_client = await get_redis()
    key = _oauth_result_key(master_id)
    data = await redis_client.get(key)
    if data:
        await redis_client.delete(key)
        return json.loads(data)
    return None


# ========== SCHEDULE ==========

@router.get("")
def schedule(
        date_from: date,
        date_to: date,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    """Bookings and blocks for the dashboard calendar grid"""
    start, end = AvailabilityService.validate_range(date_from, date_to)
    view = BookingService.master_schedule(db, master, start, end)
    return {
        "timezone": master.timezone,
        "bookings": [b.to_dict() for b in view["bookings"]],
        "blocks": [b.to_dict() for b in view["blocks"]],
    }


# ========== GOOGLE CALENDAR ==========

@router.get("/status")
async def calendar_status(master: Master = Depends(get_current_master), db: Session = Depends(get_db)):
    binding = GoogleCalendarService.get_binding(db, master.id)
    try:
        oauth_result = await pop_oauth_result(master.id)
    except Exception as e:
        logger.warning(f"Could not read OAuth result for master {master.id}: {e}")
        oauth_result = None

    return {
        "connected": binding is not None,
        "binding": binding.to_dict() if binding else None,
        "last_authorization": oauth_result,
    }


@router.get("/connect")
def connect_calendar(master: Master = Depends(get_current_master)):
    """Returns the Google consent URL for the master to visit"""
    return {"authorization_url": GoogleCalendarService().generate_authorization_url(master.id)}


@router.get("/callback", response_class=HTMLResponse)
async def google_callback(code: str, state: str, db: Session = Depends(get_db)):
    """
    Google redirects here after authorization.
    No bearer token: the master is identified by the signed state.
    """
    service = GoogleCalendarService()
    try:
        binding = service.handle_oauth_callback(code, state, db)
    except ValueError as e:
        logger.warning(f"Rejected Google OAuth callback: {e}")
        raise HTTPException(status_code=400, detail="Invalid or expired authorization state")

    try:
        await store_oauth_result(binding.master_id, {
            "provider": "google",
            "status": "connected",
            "connected_at": to_iso(utc_now()),
        })
    except Exception as e:
        logger.warning(f"Could not store OAuth result for master {binding.master_id}: {e}")

    return """
    <html>
        <head><title>Calendar connected</title></head>
        <body style="font-family: sans-serif; text-align: center; padding-top: 4rem;">
            <h1>Google Calendar connected</h1>
            <p>You can close this window and return to the dashboard.</p>
        </body>
    </html>
    """


@router.post("/push/{booking_id}")
def push_booking(booking_id: UUID, master: Master = Depends(get_current_master), db: Session = Depends(get_db)):
    """Sync one booking right away instead of waiting for the worker"""
    booking = BookingService.get_for_actor(db, booking_id, Actor.master(master))
    mapping = GoogleCalendarService().sync_booking(db, booking)
    if mapping is None:
        raise CalendarNotConnected("Google Calendar is not connected")
    return {
        "booking_id": str(booking.id),
        "external_event_id": mapping.external_event_id,
        "content_hash": mapping.last_pushed_hash,
    }


@router.delete("/event/{booking_id}")
def delete_event(booking_id: UUID, master: Master = Depends(get_current_master), db: Session = Depends(get_db)):
    BookingService.get_for_actor(db, booking_id, Actor.master(master))
    removed = GoogleCalendarService().remove_booking(db, master.id, booking_id)
    return {"removed": removed}


@router.get("/busy")
def busy_times(
        date_from: date,
        date_to: date,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    """Busy intervals pulled from the external calendar (hybrid mode only)"""
    start, end = AvailabilityService.validate_range(date_from, date_to)
    busy = GoogleCalendarService().pull_busy_times(db, master.id, start, end)
    return {"busy": [{"start": to_iso(b["start"]), "end": to_iso(b["end"])} for b in busy]}


@router.put("/settings")
def update_calendar_settings(
        request: CalendarBindingUpdate,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    binding = GoogleCalendarService().update_binding(
        db,
        master.id,
        sync_mode=request.sync_mode.value if request.sync_mode else None,
        external_calendar_id=request.external_calendar_id,
    )
    return binding.to_dict()


@router.delete("/disconnect")
def disconnect_calendar(master: Master = Depends(get_current_master), db: Session = Depends(get_db)):
    if not GoogleCalendarService().disconnect(db, master.id):
        raise CalendarNotConnected("Google Calendar is not connected")
    return {"disconnected": True}
