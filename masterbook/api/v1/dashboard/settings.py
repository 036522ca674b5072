# ============================================================================
# FILE: masterbook/api/v1/dashboard/settings.py
# Reminder, notice and discount settings, Apple Calendar feed link
# ============================================================================
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from masterbook.api.dependencies import get_current_master
from masterbook.config.database import get_db
from masterbook.models.master import Master, MasterSettings
from masterbook.schemas.master import MasterSettingsUpdate
from masterbook.services.master.master_service import MasterService
from masterbook.tasks.reminder_tasks import rebuild_reminders

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/settings")


def _with_feed_url(row: MasterSettings, master: Master, request: Request) -> dict:
    data = row.to_dict()
    data["apple_calendar_url"] = None
    if row.apple_calendar_enabled and row.apple_calendar_token:
        data["apple_calendar_url"] = str(request.url_for(
            "get_calendar_feed", slug=master.booking_slug
        ).include_query_params(token=row.apple_calendar_token))
    return data


@router.get("")
def get_settings(request: Request, master: Master = Depends(get_current_master), db: Session = Depends(get_db)):
    return _with_feed_url(MasterService.get_settings(db, master.id), master, request)


@router.put("")
def update_settings(
        payload: MasterSettingsUpdate,
        request: Request,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    previous_hours = list(MasterService.get_settings(db, master.id).reminder_hours or [])
    row = MasterService.update_settings(db, master.id, **payload.model_dump())

    if payload.reminder_hours is not None and list(row.reminder_hours) != previous_hours:
        logger.info(f"Reminder offsets changed for master {master.id}, rebuilding reminders")
        rebuild_reminders.delay(str(master.id))

    return _with_feed_url(row, master, request)


@router.post("/apple-calendar/enable")
def enable_feed(request: Request, master: Master = Depends(get_current_master), db: Session = Depends(get_db)):
    return _with_feed_url(MasterService.enable_calendar_feed(db, master.id), master, request)


@router.post("/apple-calendar/rotate")
def rotate_feed(request: Request, master: Master = Depends(get_current_master), db: Session = Depends(get_db)):
    return _with_feed_url(MasterService.rotate_calendar_feed(db, master.id), master, request)


@router.post("/apple-calendar/disable")
def disable_feed(request: Request, master: Master = Depends(get_current_master), db: Session = Depends(get_db)):
    return _with_feed_url(MasterService.disable_calendar_feed(db, master.id), master, request)
