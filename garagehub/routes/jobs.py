from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import require_capability
from ..db import get_db
from ..models.models import Job
from ..schemas.jobs import (
    JobAssign,
    JobCreate,
    JobFromBooking,
    JobNotesUpdate,
    JobPartCreate,
    JobPartDelete,
    JobRepairCreate,
    JobStatusUpdate,
)
from ..services import jobs as job_service
from ..services.identity import Actor
from ..services.invoices import invoice_for_job
from ..services.vehicles import VehicleRegistry


router = APIRouter(prefix="/api/jobs", tags=["jobs"])


def _serialize_job(job: Job, registry: Optional[VehicleRegistry] = None) -> dict:
    data = {
        "id": job.id,
        "booking_id": job.booking_id,
        "owner_id": job.owner_id,
        "workshop_id": job.workshop_id,
        "vehicle_id": job.vehicle_id,
        "assigned_mechanic_id": job.assigned_mechanic_id,
        "service_type": job.service_type,
        "description": job.description,
        "priority": job.priority,
        "status": job.status,
        "scheduled_date": job.scheduled_date.isoformat() if job.scheduled_date else None,
        "estimated_time": job.estimated_time,
        "notes": job.notes,
        "parts": [
            {
                "id": p.id,
                "name": p.name,
                "quantity": p.quantity,
                "unit_cost": f"{p.unit_cost:.2f}",
            }
            for p in job.parts
        ],
        "parts_total": f"{job_service.parts_total(job):.2f}",
        "repairs": [
            {"id": r.id, "description": r.description, "logged_at": r.logged_at.isoformat()}
            for r in job.repairs
        ],
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "updated_at": job.updated_at.isoformat() if job.updated_at else None,
    }
    if registry is not None:
        data["vehicle"] = registry.snapshot(job.vehicle_id)
    return data


@router.post("/from-booking", status_code=201)
def create_job_from_booking(
    body: JobFromBooking,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("job.create")),
):
    job = job_service.create_from_booking(
        db, actor, body.booking_id, priority=body.priority, estimated_time=body.estimated_time
    )
    return {"job_id": job.id, "status": job.status}


@router.post("", status_code=201)
def create_job(
    body: JobCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("job.create")),
):
    job = job_service.create_ad_hoc(db, actor, **body.model_dump())
    return {"job_id": job.id, "status": job.status}


@router.get("")
def list_jobs(
    workshop_id: int,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("job.list")),
):
    registry = VehicleRegistry(db)
    return [_serialize_job(j, registry) for j in job_service.list_jobs(db, actor, workshop_id, status)]


@router.get("/mechanic")
def list_mechanic_jobs(
    mechanic_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("job.list_mechanic")),
):
    registry = VehicleRegistry(db)
    return [_serialize_job(j, registry) for j in job_service.list_mechanic_jobs(db, actor, mechanic_id)]


@router.get("/mechanics")
def list_mechanics(
    workshop_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("job.list")),
):
    """Workshop mechanics with their current active-job load"""
    return [
        {"id": m.id, "name": m.name, "email": m.email, "phone": m.phone, "active_jobs": count}
        for m, count in job_service.list_mechanics_with_load(db, actor, workshop_id)
    ]


@router.post("/assign")
def assign_mechanic(
    body: JobAssign,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("job.assign")),
):
    return _serialize_job(job_service.assign_mechanic(db, actor, body.job_id, body.mechanic_id))


@router.post("/status")
def update_job_status(
    body: JobStatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("job.update_status")),
):
    return _serialize_job(job_service.update_status(db, actor, body.job_id, body.status))


@router.post("/parts", status_code=201)
def add_part(
    body: JobPartCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("job.edit_parts")),
):
    part = job_service.add_part(
        db, actor, body.job_id, name=body.name, quantity=body.quantity, unit_cost=body.unit_cost
    )
    return _serialize_job(part.job)


@router.post("/parts/delete")
def remove_part(
    body: JobPartDelete,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("job.edit_parts")),
):
    return _serialize_job(job_service.remove_part(db, actor, body.part_id))


@router.post("/repairs", status_code=201)
def add_repair(
    body: JobRepairCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("job.log_repair")),
):
    entry = job_service.add_repair_entry(db, actor, body.job_id, body.description)
    return {"id": entry.id, "job_id": entry.job_id, "description": entry.description, "logged_at": entry.logged_at.isoformat()}


@router.post("/notes")
def set_notes(
    body: JobNotesUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("job.set_notes")),
):
    return _serialize_job(job_service.set_notes(db, actor, body.job_id, body.notes))


@router.get("/service-history")
def service_history(
    owner_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("job.service_history")),
):
    registry = VehicleRegistry(db)
    result = []
    for job in job_service.service_history(db, actor, owner_id):
        data = _serialize_job(job, registry)
        invoice = invoice_for_job(db, job)
        data["invoice"] = (
            {"id": invoice.id, "total": f"{invoice.total:.2f}", "status": invoice.effective_status()}
            if invoice
            else None
        )
        result.append(data)
    return result
