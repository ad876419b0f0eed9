from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import require_capability
from ..db import get_db
from ..models.models import Booking
from ..schemas.bookings import BookingCreate, BookingStatusUpdate
from ..services import bookings as booking_service
from ..services.identity import Actor
from ..services.vehicles import VehicleRegistry


router = APIRouter(prefix="/api/bookings", tags=["bookings"])


def _serialize_booking(booking: Booking, registry: VehicleRegistry) -> dict:
    return {
        "id": booking.id,
        "owner_id": booking.owner_id,
        "workshop_id": booking.workshop_id,
        "vehicle_id": booking.vehicle_id,
        "vehicle": registry.snapshot(booking.vehicle_id),
        "customer_name": booking.customer_name,
        "customer_email": booking.customer_email,
        "customer_phone": booking.customer_phone,
        "service_type": booking.service_type,
        "preferred_date": booking.preferred_date.isoformat() if booking.preferred_date else None,
        "preferred_time": booking.preferred_time.strftime("%H:%M") if booking.preferred_time else None,
        "description": booking.description,
        "status": booking.status,
        "job_id": booking.job.id if booking.job else None,
        "created_at": booking.created_at.isoformat() if booking.created_at else None,
    }


@router.post("", status_code=201)
def submit_booking(
    body: BookingCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("booking.submit")),
):
    booking = booking_service.submit_booking(db, actor, **body.model_dump())
    return {"booking_id": booking.id, "status": booking.status}


@router.get("")
def list_bookings(
    owner_id: Optional[int] = None,
    workshop_id: Optional[int] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("booking.list")),
):
    bookings = booking_service.list_bookings(db, actor, owner_id=owner_id, workshop_id=workshop_id, status=status)
    registry = VehicleRegistry(db)
    return [_serialize_booking(b, registry) for b in bookings]


@router.post("/status")
def update_booking_status(
    body: BookingStatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("booking.advance_status")),
):
    booking = booking_service.advance_status(db, actor, body.booking_id, body.status)
    return _serialize_booking(booking, VehicleRegistry(db))
