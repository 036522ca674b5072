# ============================================================================
# FILE: masterbook/api/v1/dashboard/clients.py
# Client list and per-client history for the master
# ============================================================================
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from masterbook.api.dependencies import get_current_master
from masterbook.config.database import get_db
from masterbook.models.master import Master
from masterbook.services.booking.booking_service import BookingService

router = APIRouter(prefix="/clients")


@router.get("")
def list_clients(master: Master = Depends(get_current_master), db: Session = Depends(get_db)):
    return {"clients": BookingService.list_master_clients(db, master)}


@router.get("/{client_id}/bookings")
def client_history(client_id: UUID, master: Master = Depends(get_current_master), db: Session = Depends(get_db)):
    """Every booking this client made with the master, newest first"""
    bookings = BookingService.list_client_history(db, master, client_id)
    return {"total": len(bookings), "bookings": [b.to_dict() for b in bookings]}
