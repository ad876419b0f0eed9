from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import transaction
from ..errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ..models.models import Booking, Job, Rating, RatingRequest, utcnow
from .audit import create_audit_log
from .bookings import get_booking
from .identity import Actor, IdentityDirectory
from .notifications import notify_owner, notify_workshop, publish
from .permissions import actor_source, ensure_admin, ensure_owner, ensure_workshop_access, ensure_workshop_manager


logger = structlog.get_logger(__name__)

RATING_STATUSES = {"new", "reviewed", "resolved"}
RESOLUTION_ACTIONS = {"approved", "rejected", "deleted"}
# Both outcomes hide the rating; rows are kept so booking/job history stays intact
HIDING_ACTIONS = {"approved", "deleted"}


def get_rating(db: Session, rating_id: int) -> Rating:
    rating = db.query(Rating).filter(Rating.id == rating_id).first()
    if not rating:
        raise NotFoundError("Rating not found", context={"rating_id": rating_id})
    return rating


def _is_completed(booking: Booking) -> bool:
    if booking.status == "completed":
        return True
    return booking.job is not None and booking.job.status == "completed"


def submit_rating(
    db: Session,
    actor: Actor,
    *,
    booking_id: int,
    owner_id: int,
    rating: int,
    comment: Optional[str] = None,
) -> Rating:
    ensure_owner(actor, owner_id)
    booking = get_booking(db, booking_id)
    if booking.owner_id != owner_id:
        raise AuthorizationError("Booking belongs to another owner", context={"booking_id": booking.id})
    try:
        score = int(rating)
    except (TypeError, ValueError):
        raise ValidationError("Rating must be an integer between 1 and 5")
    if score != rating or score < 1 or score > 5:
        raise ValidationError("Rating must be an integer between 1 and 5", context={"rating": rating})
    if not _is_completed(booking):
        raise ValidationError("Only completed services can be rated", context={"booking_id": booking.id})
    if db.query(Rating.id).filter(Rating.booking_id == booking.id).first():
        raise ConflictError("This booking has already been rated", context={"booking_id": booking.id})

    job = booking.job
    with transaction(db, "This booking has already been rated"):
        record = Rating(
            booking_id=booking.id,
            job_id=job.id if job else None,
            owner_id=owner_id,
            workshop_id=booking.workshop_id,
            mechanic_id=job.assigned_mechanic_id if job else None,
            rating=score,
            comment=(comment or "").strip() or None,
        )
        db.add(record)
        db.flush()
        create_audit_log(db, "rating", record.id, "CREATE", actor, context={"booking_id": booking.id, "rating": score})
        notify_workshop(
            db,
            booking.workshop_id,
            actor_source(actor),
            "rating_received",
            "New customer review",
            f"{booking.customer_name or 'A customer'} rated {booking.service_type} {score}/5.",
        )

    logger.info("rating_submitted", rating_id=record.id, booking_id=booking.id, rating=score)
    return record


def respond(
    db: Session,
    actor: Actor,
    rating_id: int,
    *,
    response: Optional[str] = None,
    status_hint: Optional[str] = None,
) -> Rating:
    """
    Record the workshop's response. The rating's status is derived from the
    response fields; ``status_hint`` is only compared and logged.
    """
    rating = get_rating(db, rating_id)
    ensure_workshop_manager(actor, rating.workshop_id)
    if status_hint is not None and status_hint not in RATING_STATUSES:
        raise ValidationError(f"Unknown status '{status_hint}'", context={"status": status_hint})

    text = (response or "").strip() or None
    before = rating.status
    with transaction(db):
        rating.response = text
        rating.responded_at = utcnow()
        create_audit_log(
            db,
            "rating",
            rating.id,
            "RESPOND",
            actor,
            changes_json={"status": {"before": before, "after": rating.status}},
        )
        if text:
            notify_owner(
                db,
                rating.owner_id,
                actor_source(actor),
                "rating_response",
                "The workshop replied to your review",
                text[:200],
            )

    if status_hint is not None and status_hint != rating.status:
        logger.info("rating_status_hint_ignored", rating_id=rating.id, hint=status_hint, status=rating.status)
    logger.info("rating_responded", rating_id=rating.id, status=rating.status)
    return rating


def request_deletion(
    db: Session,
    actor: Actor,
    rating_id: int,
    *,
    workshop_id: int,
    requested_by: Optional[int] = None,
    reason: Optional[str] = None,
) -> RatingRequest:
    rating = get_rating(db, rating_id)
    ensure_workshop_manager(actor, workshop_id)
    if rating.workshop_id != workshop_id:
        raise AuthorizationError("Rating belongs to another workshop", context={"rating_id": rating.id})
    if rating.is_hidden:
        raise ConflictError("Rating has already been removed", context={"rating_id": rating.id})
    open_request = (
        db.query(RatingRequest.id)
        .filter(RatingRequest.rating_id == rating.id, RatingRequest.status == "pending")
        .first()
    )
    if open_request:
        raise ConflictError("A deletion request is already pending for this rating", context={"rating_id": rating.id})
    requester = actor.id if requested_by is None else requested_by
    if requester != actor.id and not IdentityDirectory(db).is_staff_of(requester, workshop_id):
        raise ValidationError(
            "requested_by must be active staff of the workshop",
            context={"requested_by": requester, "workshop_id": workshop_id},
        )

    with transaction(db, "A deletion request is already pending for this rating"):
        request = RatingRequest(
            rating_id=rating.id,
            workshop_id=workshop_id,
            requested_by=requester,
            reason=(reason or "").strip() or None,
            status="pending",
        )
        db.add(request)
        db.flush()
        create_audit_log(db, "rating_request", request.id, "CREATE", actor, context={"rating_id": rating.id})
        for admin in IdentityDirectory(db).list_admins():
            publish(
                db,
                admin.id,
                "admin",
                actor_source(actor),
                "rating_request_created",
                "Review deletion requested",
                f"Workshop #{workshop_id} asked to remove rating #{rating.id}.",
            )

    logger.info("rating_deletion_requested", request_id=request.id, rating_id=rating.id)
    return request


def resolve_request(
    db: Session,
    actor: Actor,
    request_id: int,
    *,
    action: str,
    admin_notes: Optional[str] = None,
) -> RatingRequest:
    ensure_admin(actor)
    if action not in RESOLUTION_ACTIONS:
        raise ValidationError(f"Unknown action '{action}'", context={"action": action})
    request = db.query(RatingRequest).filter(RatingRequest.id == request_id).first()
    if not request:
        raise NotFoundError("Rating request not found", context={"request_id": request_id})
    if request.status != "pending":
        raise ConflictError("Rating request already resolved", context={"request_id": request.id, "status": request.status})

    with transaction(db):
        now = utcnow()
        request.status = action
        request.admin_notes = (admin_notes or "").strip() or None
        request.resolved_at = now
        rating = request.rating
        if rating is not None and action in HIDING_ACTIONS:
            rating.is_hidden = True
            rating.hidden_at = now
        create_audit_log(
            db,
            "rating_request",
            request.id,
            "RESOLVE",
            actor,
            changes_json={"status": {"before": "pending", "after": action}},
            context={"rating_id": request.rating_id},
        )
        outcome = "removed" if action in HIDING_ACTIONS else "kept"
        notify_workshop(
            db,
            request.workshop_id,
            "admin",
            "rating_request_resolved",
            "Review request resolved",
            f"Your request for rating #{request.rating_id} was {action}; the review was {outcome}.",
        )

    logger.info("rating_request_resolved", request_id=request.id, action=action)
    return request


def list_owner_ratings(db: Session, actor: Actor, owner_id: int) -> List[Rating]:
    ensure_owner(actor, owner_id)
    return (
        db.query(Rating)
        .filter(Rating.owner_id == owner_id, Rating.is_hidden.is_(False))
        .order_by(Rating.created_at.desc(), Rating.id.desc())
        .all()
    )


def list_pending_ratings(db: Session, actor: Actor, owner_id: int) -> List[Job]:
    """Completed, booking-backed jobs the owner has not rated yet."""
    ensure_owner(actor, owner_id)
    rated = select(Rating.booking_id).where(Rating.owner_id == owner_id)
    return (
        db.query(Job)
        .filter(
            Job.owner_id == owner_id,
            Job.status == "completed",
            Job.booking_id.isnot(None),
            Job.booking_id.notin_(rated),
        )
        .order_by(Job.completed_at.desc(), Job.id.desc())
        .all()
    )


def list_workshop_ratings(db: Session, actor: Actor, workshop_id: int) -> List[Rating]:
    ensure_workshop_access(actor, workshop_id)
    return (
        db.query(Rating)
        .filter(Rating.workshop_id == workshop_id, Rating.is_hidden.is_(False))
        .order_by(Rating.created_at.desc(), Rating.id.desc())
        .all()
    )


def list_workshop_requests(db: Session, actor: Actor, workshop_id: int) -> List[RatingRequest]:
    ensure_workshop_access(actor, workshop_id)
    return (
        db.query(RatingRequest)
        .filter(RatingRequest.workshop_id == workshop_id)
        .order_by(RatingRequest.created_at.desc(), RatingRequest.id.desc())
        .all()
    )


def admin_list_ratings(db: Session, actor: Actor, include_hidden: bool = True) -> List[Rating]:
    ensure_admin(actor)
    query = db.query(Rating)
    if not include_hidden:
        query = query.filter(Rating.is_hidden.is_(False))
    return query.order_by(Rating.created_at.desc(), Rating.id.desc()).all()


def admin_list_requests(db: Session, actor: Actor, status: Optional[str] = None) -> List[RatingRequest]:
    ensure_admin(actor)
    query = db.query(RatingRequest)
    if status:
        query = query.filter(RatingRequest.status == status)
    return query.order_by(RatingRequest.created_at.desc(), RatingRequest.id.desc()).all()
