# masterbook/services/catalog/catalog_service.py
"""Service catalog of a master (what can be booked)"""
import logging
from decimal import Decimal
from typing import List, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from masterbook.models.service import Service
from masterbook.services.booking.errors import ServiceNotFound

logger = logging.getLogger(__name__)


class CatalogService:

    @staticmethod
    def list_services(db: Session, master_id: UUID, include_inactive: bool = False) -> List[Service]:
        query = db.query(Service).filter(Service.master_id == master_id)
        if not include_inactive:
            query = query.filter(Service.is_active == True)
        return query.order_by(Service.created_at.asc()).all()

    @staticmethod
    def get_service(db: Session, master_id: UUID, service_id: UUID) -> Service:
        service = db.query(Service).filter(
            Service.id == service_id,
            Service.master_id == master_id
        ).first()
        if not service:
            raise ServiceNotFound()
        return service

    @staticmethod
    def resolve_active(db: Session, master_id: UUID, service_ids: Sequence[UUID]) -> List[Service]:
        """
        Active services of this master, in the requested order.
        Raises ServiceNotFound if any id is unknown, inactive or belongs to another master.
        """
        if not service_ids:
            raise ServiceNotFound("At least one service is required")

        wanted = [UUID(str(s)) for s in service_ids]
        rows = db.query(Service).filter(
            Service.id.in_(wanted),
            Service.master_id == master_id,
            Service.is_active == True
        ).all()
        by_id = {row.id: row for row in rows}

        missing = [str(s) for s in wanted if s not in by_id]
        if missing:
            raise ServiceNotFound(f"Service not found: {', '.join(missing)}")
        return [by_id[s] for s in wanted]

    @staticmethod
    def create_service(db: Session, master_id: UUID, **data) -> Service:
        price = data.get("price")
        service = Service(
            master_id=master_id,
            name=data["name"],
            description=data.get("description"),
            price=Decimal(str(price)) if price is not None else None,
            duration_minutes=data["duration_minutes"],
            buffer_before_minutes=data.get("buffer_before_minutes") or 0,
            buffer_after_minutes=data.get("buffer_after_minutes") or 0,
            is_active=True,
        )
        db.add(service)
        db.commit()
        db.refresh(service)
        logger.info(f"Created service {service.id}: {service.name}")
        return service

    @staticmethod
    def update_service(db: Session, master_id: UUID, service_id: UUID, **changes) -> Service:
        service = CatalogService.get_service(db, master_id, service_id)
        for field, value in changes.items():
            if value is None:
                continue
            if field == "price":
                value = Decimal(str(value))
            setattr(service, field, value)
        db.commit()
        db.refresh(service)
        return service

    @staticmethod
    def deactivate_service(db: Session, master_id: UUID, service_id: UUID) -> Service:
        """Soft delete, existing bookings keep pointing at it"""
        service = CatalogService.get_service(db, master_id, service_id)
        service.is_active = False
        db.commit()
        db.refresh(service)
        logger.info(f"Deactivated service {service.id}")
        return service
