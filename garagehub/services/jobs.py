from datetime import date
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from ..config import settings
from ..db import transaction
from ..errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    InvariantViolationError,
    NotFoundError,
    ValidationError,
)
from ..models.models import Job, JobPart, JobRepairEntry, User, money, utcnow
from .audit import compute_diff, create_audit_log
from .bookings import apply_booking_transition, follow_job_status, get_booking
from .identity import Actor, IdentityDirectory
from .notifications import notify_mechanic, notify_owner, notify_workshop
from .permissions import actor_source, ensure_job_access, ensure_owner, ensure_workshop_access, ensure_workshop_manager
from .vehicles import VehicleRegistry


logger = structlog.get_logger(__name__)

PRIORITIES = {"low", "medium", "high"}
JOB_STATUSES = {"unassigned", "assigned", "in-progress", "completed", "on-hold"}
MECHANIC_STATUSES = {"assigned", "in-progress", "completed", "on-hold"}
ACTIVE_STATUSES = ("assigned", "in-progress")

JOB_TRANSITIONS = {
    "unassigned": {"assigned"},
    "assigned": {"in-progress"},
    "in-progress": {"completed", "on-hold"},
    "on-hold": {"in-progress"},
    "completed": set(),
}


def get_job(db: Session, job_id: int) -> Job:
    job = db.query(Job).filter(Job.id == job_id).first()
    if not job:
        raise NotFoundError("Job not found", context={"job_id": job_id})
    return job


def parts_total(job: Job) -> Decimal:
    """Sum of quantity x unit cost over the job's parts; never stored on the job."""
    return job.parts_total


def check_assignment_invariant(job: Job) -> None:
    has_mechanic = job.assigned_mechanic_id is not None
    if has_mechanic != (job.status in MECHANIC_STATUSES):
        raise InvariantViolationError(
            "Job mechanic assignment does not match its status",
            context={"job_id": job.id, "status": job.status, "mechanic_id": job.assigned_mechanic_id},
        )


def _normalize_priority(priority: Optional[str]) -> str:
    if priority is None or priority == "":
        return "medium"
    if priority not in PRIORITIES:
        raise ValidationError(f"Invalid priority '{priority}'", context={"priority": priority})
    return priority


def create_from_booking(
    db: Session,
    actor: Actor,
    booking_id: int,
    *,
    priority: Optional[str] = None,
    estimated_time: Optional[str] = None,
) -> Job:
    booking = get_booking(db, booking_id)
    ensure_workshop_manager(actor, booking.workshop_id)
    if booking.status in {"rejected", "completed"}:
        raise InvalidTransitionError(
            f"Cannot create a job for a {booking.status} booking",
            context={"booking_id": booking.id},
        )
    job_priority = _normalize_priority(priority)
    if db.query(Job.id).filter(Job.booking_id == booking.id).first():
        raise ConflictError("A job already exists for this booking", context={"booking_id": booking.id})

    with transaction(db, "A job already exists for this booking"):
        if booking.status == "pending":
            apply_booking_transition(db, actor, booking, "confirmed")
        job = Job(
            booking_id=booking.id,
            owner_id=booking.owner_id,
            vehicle_id=booking.vehicle_id,
            workshop_id=booking.workshop_id,
            service_type=booking.service_type,
            description=booking.description,
            priority=job_priority,
            status="unassigned",
            scheduled_date=booking.preferred_date,
            estimated_time=estimated_time,
        )
        db.add(job)
        db.flush()
        create_audit_log(db, "job", job.id, "CREATE", actor, context={"booking_id": booking.id})

    logger.info("job_created", job_id=job.id, booking_id=booking.id, workshop_id=job.workshop_id)
    return job


def create_ad_hoc(
    db: Session,
    actor: Actor,
    *,
    workshop_id: int,
    owner_id: int,
    service_type: str,
    vehicle_id: Optional[int] = None,
    description: Optional[str] = None,
    priority: Optional[str] = None,
    scheduled_date: Optional[date] = None,
    estimated_time: Optional[str] = None,
) -> Job:
    """Job without a booking, e.g. a walk-in."""
    ensure_workshop_manager(actor, workshop_id)
    if not (service_type or "").strip():
        raise ValidationError("service_type is required")
    directory = IdentityDirectory(db)
    directory.get_workshop(workshop_id)
    directory.get_user(owner_id, role="owner")
    if vehicle_id is not None and not VehicleRegistry(db).belongs_to(vehicle_id, owner_id):
        raise ValidationError("Vehicle not registered to this owner", context={"vehicle_id": vehicle_id})

    with transaction(db):
        job = Job(
            owner_id=owner_id,
            vehicle_id=vehicle_id,
            workshop_id=workshop_id,
            service_type=service_type.strip(),
            description=description,
            priority=_normalize_priority(priority),
            status="unassigned",
            scheduled_date=scheduled_date,
            estimated_time=estimated_time,
        )
        db.add(job)
        db.flush()
        create_audit_log(db, "job", job.id, "CREATE", actor, context={"ad_hoc": True})

    logger.info("job_created", job_id=job.id, workshop_id=workshop_id, ad_hoc=True)
    return job


def _active_job_count(db: Session, mechanic_id: int, exclude_job_id: Optional[int] = None) -> int:
    query = db.query(func.count(Job.id)).filter(
        Job.assigned_mechanic_id == mechanic_id,
        Job.status.in_(ACTIVE_STATUSES),
    )
    if exclude_job_id is not None:
        query = query.filter(Job.id != exclude_job_id)
    return int(query.scalar() or 0)


def assign_mechanic(db: Session, actor: Actor, job_id: int, mechanic_id: int) -> Job:
    job = get_job(db, job_id)
    ensure_workshop_manager(actor, job.workshop_id)
    directory = IdentityDirectory(db)
    mechanic = directory.get_mechanic(mechanic_id)
    if job.status == "completed":
        raise ConflictError("Cannot assign a completed job", context={"job_id": job.id})
    if not directory.is_mechanic_of(mechanic.id, job.workshop_id):
        raise AuthorizationError(
            "Mechanic not in this workshop",
            context={"mechanic_id": mechanic.id, "workshop_id": job.workshop_id},
        )
    if _active_job_count(db, mechanic.id, exclude_job_id=job.id) >= settings.mechanic_max_active_jobs:
        raise ConflictError("Mechanic is busy", context={"mechanic_id": mechanic.id})

    before = {"status": job.status, "assigned_mechanic_id": job.assigned_mechanic_id}
    with transaction(db):
        job.assigned_mechanic_id = mechanic.id
        job.status = "assigned"
        job.updated_at = utcnow()
        check_assignment_invariant(job)
        create_audit_log(
            db,
            "job",
            job.id,
            "ASSIGN",
            actor,
            changes_json=compute_diff(before, {"status": job.status, "assigned_mechanic_id": job.assigned_mechanic_id}),
        )
        notify_mechanic(
            db,
            mechanic.id,
            actor_source(actor),
            "job_assigned",
            "New job assigned",
            f"You have been assigned job #{job.id} ({job.service_type}).",
        )
        notify_owner(
            db,
            job.owner_id,
            actor_source(actor),
            "job_assigned",
            "Mechanic assigned",
            f"{mechanic.name} will work on your {job.service_type}.",
        )

    logger.info("job_assigned", job_id=job.id, mechanic_id=mechanic.id)
    return job


def update_status(db: Session, actor: Actor, job_id: int, status: str) -> Job:
    job = get_job(db, job_id)
    ensure_job_access(actor, job)
    current = job.status
    if status not in JOB_STATUSES or status not in JOB_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(
            f"Job cannot move from {current} to {status}",
            context={"job_id": job.id, "from": current, "to": status},
        )
    if status == "assigned" and job.assigned_mechanic_id is None:
        raise InvalidTransitionError("Assign a mechanic before marking the job assigned", context={"job_id": job.id})

    with transaction(db):
        job.status = status
        job.updated_at = utcnow()
        if status == "completed":
            job.completed_at = job.updated_at
        check_assignment_invariant(job)
        create_audit_log(
            db,
            "job",
            job.id,
            "STATUS",
            actor,
            changes_json={"status": {"before": current, "after": status}},
        )
        if job.booking_id is not None:
            follow_job_status(db, actor, job.booking, status)
        if status == "completed":
            notify_owner(
                db,
                job.owner_id,
                actor_source(actor),
                "job_completed",
                "Vehicle ready",
                f"Work on your {job.service_type} is complete.",
            )
        if actor.role == "mechanic":
            notify_workshop(
                db,
                job.workshop_id,
                "mechanic",
                "job_status_changed",
                "Job status updated",
                f"Job #{job.id} moved from {current} to {status}.",
            )

    logger.info("job_status_changed", job_id=job.id, before=current, after=status)
    return job


def _ensure_open(job: Job) -> None:
    if job.status == "completed":
        raise ConflictError("Job is completed; parts are locked", context={"job_id": job.id})


def add_part(db: Session, actor: Actor, job_id: int, *, name: str, quantity: int = 1, unit_cost=0) -> JobPart:
    if not (name or "").strip():
        raise ValidationError("Part name is required")
    try:
        quantity = int(quantity)
        cost = money(unit_cost)
    except (TypeError, ValueError, InvalidOperation):
        raise ValidationError("Invalid quantity or unit cost")
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1", context={"quantity": quantity})
    if cost < 0:
        raise ValidationError("Unit cost cannot be negative", context={"unit_cost": str(cost)})

    job = get_job(db, job_id)
    ensure_job_access(actor, job)
    _ensure_open(job)

    with transaction(db):
        part = JobPart(job_id=job.id, name=name.strip(), quantity=quantity, unit_cost=cost)
        job.parts.append(part)
        job.updated_at = utcnow()
        db.flush()
        create_audit_log(
            db,
            "job",
            job.id,
            "ADD_PART",
            actor,
            context={"part_id": part.id, "name": part.name, "quantity": quantity, "unit_cost": str(cost)},
        )

    logger.info("job_part_added", job_id=job.id, part_id=part.id)
    return part


def remove_part(db: Session, actor: Actor, part_id: int) -> Job:
    part = db.query(JobPart).filter(JobPart.id == part_id).first()
    if not part:
        raise NotFoundError("Part not found", context={"part_id": part_id})
    job = part.job
    ensure_job_access(actor, job)
    _ensure_open(job)

    with transaction(db):
        job.parts.remove(part)
        job.updated_at = utcnow()
        create_audit_log(db, "job", job.id, "REMOVE_PART", actor, context={"part_id": part_id, "name": part.name})

    logger.info("job_part_removed", job_id=job.id, part_id=part_id)
    return job


def add_repair_entry(db: Session, actor: Actor, job_id: int, description: str) -> JobRepairEntry:
    if not (description or "").strip():
        raise ValidationError("Repair description is required")
    job = get_job(db, job_id)
    ensure_job_access(actor, job)

    with transaction(db):
        entry = JobRepairEntry(job_id=job.id, description=description.strip(), logged_at=utcnow())
        db.add(entry)
        job.updated_at = entry.logged_at
        db.flush()

    logger.info("job_repair_logged", job_id=job.id, repair_id=entry.id)
    return entry


def set_notes(db: Session, actor: Actor, job_id: int, notes: Optional[str]) -> Job:
    job = get_job(db, job_id)
    ensure_job_access(actor, job)
    with transaction(db):
        job.notes = notes or None
        job.updated_at = utcnow()
    return job


def list_jobs(db: Session, actor: Actor, workshop_id: int, status: Optional[str] = None) -> List[Job]:
    ensure_workshop_access(actor, workshop_id)
    query = db.query(Job).options(selectinload(Job.parts), selectinload(Job.repairs)).filter(Job.workshop_id == workshop_id)
    if status:
        query = query.filter(Job.status == status)
    return query.order_by(Job.created_at.desc(), Job.id.desc()).all()


def list_mechanic_jobs(db: Session, actor: Actor, mechanic_id: int) -> List[Job]:
    mechanic = IdentityDirectory(db).get_mechanic(mechanic_id)
    if actor.role == "mechanic" and actor.id != mechanic.id:
        raise AuthorizationError("Mechanics may only list their own jobs")
    if actor.role == "workshop" and actor.workshop_id != mechanic.workshop_id:
        raise AuthorizationError("Mechanic belongs to another workshop")
    return (
        db.query(Job)
        .options(selectinload(Job.parts), selectinload(Job.repairs))
        .filter(Job.assigned_mechanic_id == mechanic.id)
        .order_by(Job.updated_at.desc(), Job.id.desc())
        .all()
    )


def list_mechanics_with_load(db: Session, actor: Actor, workshop_id: int) -> List[Tuple[User, int]]:
    ensure_workshop_access(actor, workshop_id)
    mechanics = IdentityDirectory(db).list_mechanics(workshop_id)
    return [(m, _active_job_count(db, m.id)) for m in mechanics]


def service_history(db: Session, actor: Actor, owner_id: int) -> List[Job]:
    ensure_owner(actor, owner_id)
    return (
        db.query(Job)
        .options(selectinload(Job.parts))
        .filter(Job.owner_id == owner_id, Job.status == "completed")
        .order_by(Job.completed_at.desc(), Job.id.desc())
        .all()
    )
