# ============================================================================
# FILE: masterbook/api/v1/dashboard/profile.py
# Master profile setup
# ============================================================================
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from masterbook.api.dependencies import get_current_master, get_current_user
from masterbook.config.database import get_db
from masterbook.models.master import Master
from masterbook.models.user import User
from masterbook.schemas.master import MasterProfileUpdate, MasterSetupRequest
from masterbook.services.master.master_service import MasterService

router = APIRouter()


@router.post("/setup")
def setup_master(
        request: MasterSetupRequest,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db)
):
    """Turn the current user into a master, or update an existing profile"""
    master = MasterService.setup_master(
        db,
        current_user,
        display_name=request.display_name,
        timezone=request.timezone,
        cancel_policy_hours=request.cancel_policy_hours,
    )
    return master.to_dict()


@router.get("/profile")
def get_profile(master: Master = Depends(get_current_master)):
    return master.to_dict()


@router.put("/profile")
def update_profile(
        request: MasterProfileUpdate,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    master = MasterService.update_profile(db, master, **request.model_dump(exclude_unset=True))
    return master.to_dict()
