from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import require_capability
from ..db import get_db
from ..models.models import Rating, RatingRequest
from ..schemas.ratings import RatingCreate, RatingDeletionRequest, RatingRequestResolve, RatingResponse
from ..services import ratings as rating_service
from ..services.identity import Actor


router = APIRouter(prefix="/api/ratings", tags=["ratings"])


def _serialize_rating(rating: Rating) -> dict:
    return {
        "id": rating.id,
        "booking_id": rating.booking_id,
        "job_id": rating.job_id,
        "owner_id": rating.owner_id,
        "workshop_id": rating.workshop_id,
        "mechanic_id": rating.mechanic_id,
        "rating": rating.rating,
        "comment": rating.comment,
        "response": rating.response,
        "status": rating.status,
        "is_hidden": rating.is_hidden,
        "created_at": rating.created_at.isoformat() if rating.created_at else None,
        "responded_at": rating.responded_at.isoformat() if rating.responded_at else None,
    }


def _serialize_request(request: RatingRequest) -> dict:
    return {
        "id": request.id,
        "rating_id": request.rating_id,
        "workshop_id": request.workshop_id,
        "requested_by": request.requested_by,
        "reason": request.reason,
        "status": request.status,
        "admin_notes": request.admin_notes,
        "created_at": request.created_at.isoformat() if request.created_at else None,
        "resolved_at": request.resolved_at.isoformat() if request.resolved_at else None,
    }


@router.post("", status_code=201)
def submit_rating(
    body: RatingCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("rating.submit")),
):
    rating = rating_service.submit_rating(
        db, actor, booking_id=body.booking_id, owner_id=body.owner_id, rating=body.rating, comment=body.comment
    )
    return _serialize_rating(rating)


@router.get("")
def list_owner_ratings(
    owner_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("rating.list_owner")),
):
    return [_serialize_rating(r) for r in rating_service.list_owner_ratings(db, actor, owner_id)]


@router.get("/pending")
def list_pending_ratings(
    owner_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("rating.list_owner")),
):
    """Completed services still waiting for the owner's review"""
    return [
        {
            "job_id": job.id,
            "booking_id": job.booking_id,
            "workshop_id": job.workshop_id,
            "service_type": job.service_type,
            "completed_at": job.completed_at.isoformat() if job.completed_at else None,
        }
        for job in rating_service.list_pending_ratings(db, actor, owner_id)
    ]


@router.get("/workshop")
def list_workshop_ratings(
    workshop_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("rating.list_workshop")),
):
    return [_serialize_rating(r) for r in rating_service.list_workshop_ratings(db, actor, workshop_id)]


@router.post("/response")
def respond_to_rating(
    body: RatingResponse,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("rating.respond")),
):
    rating = rating_service.respond(db, actor, body.rating_id, response=body.response, status_hint=body.status)
    return _serialize_rating(rating)


@router.post("/request-delete", status_code=201)
def request_rating_deletion(
    body: RatingDeletionRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("rating.request_deletion")),
):
    request = rating_service.request_deletion(
        db,
        actor,
        body.rating_id,
        workshop_id=body.workshop_id,
        requested_by=body.requested_by,
        reason=body.reason,
    )
    return _serialize_request(request)


@router.get("/requests")
def list_workshop_requests(
    workshop_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("rating.list_requests")),
):
    return [_serialize_request(r) for r in rating_service.list_workshop_requests(db, actor, workshop_id)]


@router.get("/admin")
def admin_list_ratings(
    include_hidden: bool = True,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("rating.admin")),
):
    return [_serialize_rating(r) for r in rating_service.admin_list_ratings(db, actor, include_hidden)]


@router.get("/admin/requests")
def admin_list_requests(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("rating.admin")),
):
    return [_serialize_request(r) for r in rating_service.admin_list_requests(db, actor, status)]


@router.post("/requests/resolve")
def resolve_rating_request(
    body: RatingRequestResolve,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("rating.resolve_request")),
):
    request = rating_service.resolve_request(db, actor, body.request_id, action=body.action, admin_notes=body.admin_notes)
    return _serialize_request(request)
