from datetime import date, time
from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

from ..db import transaction
from ..errors import AuthorizationError, InvalidTransitionError, NotFoundError, ValidationError
from ..models.models import Booking
from .audit import create_audit_log
from .identity import Actor, IdentityDirectory
from .notifications import notify_owner, notify_workshop
from .permissions import actor_source, ensure_owner, ensure_workshop_manager
from .vehicles import VehicleRegistry


logger = structlog.get_logger(__name__)

BOOKING_STATUSES = {"pending", "confirmed", "rejected", "in-progress", "completed"}

# Monotonic: nothing ever leads back to pending
BOOKING_TRANSITIONS = {
    "pending": {"confirmed", "rejected"},
    "confirmed": {"in-progress"},
    "in-progress": {"completed"},
    "rejected": set(),
    "completed": set(),
}

_OWNER_MESSAGES = {
    "confirmed": ("Booking confirmed", "Your {service} booking for {date} has been confirmed."),
    "rejected": ("Booking rejected", "Your {service} booking for {date} was declined by the workshop."),
    "completed": ("Service completed", "Your {service} service is complete."),
}


def get_booking(db: Session, booking_id: int) -> Booking:
    booking = db.query(Booking).filter(Booking.id == booking_id).first()
    if not booking:
        raise NotFoundError("Booking not found", context={"booking_id": booking_id})
    return booking


def submit_booking(
    db: Session,
    actor: Actor,
    *,
    owner_id: Optional[int],
    workshop_id: Optional[int],
    service_type: Optional[str],
    preferred_date: Optional[date],
    preferred_time: Optional[time],
    vehicle_id: Optional[int] = None,
    description: Optional[str] = None,
    customer_name: Optional[str] = None,
    customer_email: Optional[str] = None,
    customer_phone: Optional[str] = None,
) -> Booking:
    missing = [
        name
        for name, value in (
            ("owner_id", owner_id),
            ("workshop_id", workshop_id),
            ("service_type", (service_type or "").strip() or None),
            ("preferred_date", preferred_date),
            ("preferred_time", preferred_time),
        )
        if value is None
    ]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", context={"missing": missing})

    ensure_owner(actor, owner_id)
    directory = IdentityDirectory(db)
    owner = directory.get_user(owner_id, role="owner")
    workshop = directory.get_workshop(workshop_id)

    if vehicle_id is not None and not VehicleRegistry(db).belongs_to(vehicle_id, owner_id):
        raise ValidationError("Vehicle not registered to this owner", context={"vehicle_id": vehicle_id})

    with transaction(db):
        booking = Booking(
            owner_id=owner_id,
            workshop_id=workshop.id,
            vehicle_id=vehicle_id,
            customer_name=customer_name or owner.name,
            customer_email=customer_email or owner.email,
            customer_phone=customer_phone or owner.phone,
            service_type=service_type.strip(),
            preferred_date=preferred_date,
            preferred_time=preferred_time,
            description=description,
            status="pending",
        )
        db.add(booking)
        db.flush()
        create_audit_log(db, "booking", booking.id, "CREATE", actor, context={"workshop_id": workshop.id})
        notify_workshop(
            db,
            workshop.id,
            actor_source(actor),
            "booking_received",
            "New booking request",
            f"{booking.customer_name or 'A customer'} requested {booking.service_type} on {preferred_date.isoformat()}.",
        )

    logger.info("booking_submitted", booking_id=booking.id, owner_id=owner_id, workshop_id=workshop.id)
    return booking


def list_bookings(
    db: Session,
    actor: Actor,
    *,
    owner_id: Optional[int] = None,
    workshop_id: Optional[int] = None,
    status: Optional[str] = None,
) -> List[Booking]:
    if owner_id is None and workshop_id is None:
        raise ValidationError("owner_id or workshop_id required")
    if not actor.is_admin:
        if actor.role == "owner" and owner_id != actor.id:
            raise AuthorizationError("Owners may only list their own bookings")
        if actor.role == "workshop" and workshop_id != actor.workshop_id:
            raise AuthorizationError("Workshops may only list their own bookings")

    query = db.query(Booking)
    if owner_id is not None:
        query = query.filter(Booking.owner_id == owner_id)
    if workshop_id is not None:
        query = query.filter(Booking.workshop_id == workshop_id)
    if status:
        query = query.filter(Booking.status == status)
    return query.order_by(Booking.created_at.desc(), Booking.id.desc()).all()


def apply_booking_transition(db: Session, actor: Optional[Actor], booking: Booking, new_status: str) -> None:
    """Validate and apply one edge inside the caller's transaction."""
    current = booking.status
    if new_status not in BOOKING_STATUSES or new_status not in BOOKING_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(
            f"Booking cannot move from {current} to {new_status}",
            context={"booking_id": booking.id, "from": current, "to": new_status},
        )
    booking.status = new_status
    create_audit_log(
        db,
        "booking",
        booking.id,
        "STATUS",
        actor,
        changes_json={"status": {"before": current, "after": new_status}},
    )
    if new_status in _OWNER_MESSAGES:
        title, template = _OWNER_MESSAGES[new_status]
        notify_owner(
            db,
            booking.owner_id,
            actor_source(actor),
            f"booking_{new_status.replace('-', '_')}",
            title,
            template.format(service=booking.service_type, date=booking.preferred_date.isoformat()),
        )


def advance_status(db: Session, actor: Actor, booking_id: int, new_status: str) -> Booking:
    booking = get_booking(db, booking_id)
    ensure_workshop_manager(actor, booking.workshop_id)
    previous = booking.status
    with transaction(db):
        apply_booking_transition(db, actor, booking, new_status)
    logger.info("booking_status_changed", booking_id=booking.id, before=previous, after=new_status)
    return booking


def follow_job_status(db: Session, actor: Optional[Actor], booking: Booking, job_status: str) -> None:
    """
    Walk the booking forward along legal edges so it mirrors its job:
    a started job means an in-progress booking, a finished job a completed one.
    """
    targets = {"in-progress": ["in-progress"], "completed": ["in-progress", "completed"]}
    for target in targets.get(job_status, []):
        if booking.status == "confirmed" and target == "in-progress":
            apply_booking_transition(db, actor, booking, "in-progress")
        elif booking.status == "in-progress" and target == "completed":
            apply_booking_transition(db, actor, booking, "completed")
