# ============================================================================
# FILE: masterbook/api/v1/dashboard/services.py
# Service catalog management
# ============================================================================
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from masterbook.api.dependencies import get_current_master
from masterbook.config.database import get_db
from masterbook.models.master import Master
from masterbook.schemas.catalog import ServiceCreate, ServiceUpdate
from masterbook.services.catalog.catalog_service import CatalogService

router = APIRouter(prefix="/services")


@router.get("")
def list_services(
        include_inactive: bool = False,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    services = CatalogService.list_services(db, master.id, include_inactive=include_inactive)
    return {"total": len(services), "services": [s.to_dict() for s in services]}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_service(
        request: ServiceCreate,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    return CatalogService.create_service(db, master.id, **request.model_dump()).to_dict()


@router.put("/{service_id}")
def update_service(
        service_id: UUID,
        request: ServiceUpdate,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    service = CatalogService.update_service(db, master.id, service_id, **request.model_dump(exclude_unset=True))
    return service.to_dict()


@router.delete("/{service_id}")
def delete_service(
        service_id: UUID,
        master: Master = Depends(get_current_master),
        db: Session = Depends(get_db)
):
    """Soft delete: existing bookings keep pointing at the service"""
    return CatalogService.deactivate_service(db, master.id, service_id).to_dict()
