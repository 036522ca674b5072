# ============================================================================
# FILE: masterbook/api/v1/dashboard/availability.py
# Weekly rules, dated windows, days off and manual blocks
# ============================================================================
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from masterbook.api.dependencies import get_current_master
from masterbook.config.database import get_db
from masterbook.models.master import Master
from masterbook.schemas.availability import (
    AvailabilityExclusionCreate,
    AvailabilityRuleCreate,
    AvailabilityRuleUpdate,
    AvailabilityWindowCreate,
    MasterBlockCreate,
    MasterBlockUpdate,
)
from masterbook.services.availability.availability_service import AvailabilityService
from masterbook.utils.time_windows import utc_now

router = APIRouter(prefix="/availability")


def _deleted_or_404(deleted: bool, what: str) -> dict:
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} not found")
    return {"deleted": True}


def _changes(request) -> dict:
    changes = request.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    return changes


def _found_or_404(item, what: str) -> dict:
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} not found")
    return item.to_dict()


# ========== RULES ==========

@router.get("/rules")
def list_rules(master: Master = Depends(get_current_master), db: Session = Depends(get_db)):
    return [r.to_dict() for r in AvailabilityService.list_rules(db, master.id)]


@router.post("/rules", status_code=status.HTTP_201_CREATED)
def create_rule(
        request: AvailabilityRuleCreate,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    return AvailabilityService.create_rule(db, master.id, **request.model_dump()).to_dict()


@router.put("/rules/{rule_id}")
def update_rule(
        rule_id: UUID,
        request: AvailabilityRuleUpdate,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    changes = _changes(request)
    return _found_or_404(AvailabilityService.update_rule(db, master.id, rule_id, **changes), "Rule")


@router.delete("/rules/{rule_id}")
def delete_rule(rule_id: UUID, master: Master = Depends(get_current_master), db: Session = Depends(get_db)):
    return _deleted_or_404(AvailabilityService.delete_rule(db, master.id, rule_id), "Rule")


# ========== DATED WINDOWS ==========

@router.get("/windows")
def list_windows(
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    return [w.to_dict() for w in AvailabilityService.list_windows(db, master.id, date_from, date_to)]


@router.post("/windows", status_code=status.HTTP_201_CREATED)
def create_window(
        request: AvailabilityWindowCreate,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    return AvailabilityService.create_window(db, master.id, **request.model_dump()).to_dict()


@router.delete("/windows/{window_id}")
def delete_window(window_id: UUID, master: Master = Depends(get_current_master), db: Session = Depends(get_db)):
    return _deleted_or_404(AvailabilityService.delete_window(db, master.id, window_id), "Window")


# ========== DAYS OFF ==========

@router.get("/exclusions")
def list_exclusions(master: Master = Depends(get_current_master), db: Session = Depends(get_db)):
    return [e.to_dict() for e in AvailabilityService.list_exclusions(db, master.id)]


@router.post("/exclusions", status_code=status.HTTP_201_CREATED)
def create_exclusion(
        request: AvailabilityExclusionCreate,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    return AvailabilityService.create_exclusion(db, master.id, **request.model_dump()).to_dict()


@router.delete("/exclusions/{exclusion_id}")
def delete_exclusion(exclusion_id: UUID, master: Master = Depends(get_current_master), db: Session = Depends(get_db)):
    return _deleted_or_404(AvailabilityService.delete_exclusion(db, master.id, exclusion_id), "Exclusion")


# ========== BLOCKS ==========

@router.get("/blocks")
def list_blocks(
        upcoming: bool = True,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    since = utc_now() if upcoming else None
    return [b.to_dict() for b in AvailabilityService.list_blocks(db, master.id, since=since)]


@router.post("/blocks", status_code=status.HTTP_201_CREATED)
def create_block(
        request: MasterBlockCreate,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    return AvailabilityService.create_block(db, master.id, **request.model_dump()).to_dict()


@router.put("/blocks/{block_id}")
def update_block(
        block_id: UUID,
        request: MasterBlockUpdate,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    changes = _changes(request)
    return _found_or_404(AvailabilityService.update_block(db, master.id, block_id, **changes), "Block")


@router.delete("/blocks/{block_id}")
def delete_block(block_id: UUID, master: Master = Depends(get_current_master), db: Session = Depends(get_db)):
    return _deleted_or_404(AvailabilityService.delete_block(db, master.id, block_id), "Block")


# ========== PREVIEW ==========

@router.get("/preview")
def preview_slots(
        date_from: date,
        date_to: date,
        service_ids: List[UUID] = Query(..., min_length=1),
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    """The slots clients would see right now"""
    slots = AvailabilityService.get_slots(db, master, service_ids, date_from, date_to)
    return {"timezone": master.timezone, "slots": [slot.to_dict() for slot in slots]}
