"""
Capability checks for workflow operations.

Each operation declares the roles allowed to invoke it; ``authorize`` is the
single gate evaluated before any state machine runs. The ``ensure_*``
helpers add the ownership scoping that a role alone cannot express.
"""
from typing import Optional

from ..errors import AuthorizationError
from .identity import Actor


CAPABILITIES = {
    # Booking intake
    "booking.submit": {"owner", "admin"},
    "booking.list": {"owner", "workshop", "admin"},
    "booking.advance_status": {"workshop", "admin"},
    # Job dispatch
    "job.create": {"workshop", "admin"},
    "job.list": {"workshop", "admin"},
    "job.list_mechanic": {"mechanic", "workshop", "admin"},
    "job.assign": {"workshop", "admin"},
    "job.update_status": {"workshop", "mechanic", "admin"},
    "job.edit_parts": {"workshop", "mechanic", "admin"},
    "job.log_repair": {"workshop", "mechanic", "admin"},
    "job.set_notes": {"workshop", "mechanic", "admin"},
    "job.service_history": {"owner", "admin"},
    # Invoice engine
    "invoice.generate": {"workshop", "admin"},
    "invoice.list": {"owner", "workshop", "admin"},
    "invoice.set_status": {"workshop", "admin"},
    "invoice.replace_items": {"workshop", "admin"},
    # Rating & dispute
    "rating.submit": {"owner"},
    "rating.list_owner": {"owner", "admin"},
    "rating.list_workshop": {"workshop", "admin"},
    "rating.respond": {"workshop"},
    "rating.request_deletion": {"workshop"},
    "rating.list_requests": {"workshop", "admin"},
    "rating.admin": {"admin"},
    "rating.resolve_request": {"admin"},
    # Notifications
    "notification.read": {"owner", "workshop", "mechanic", "admin"},
    # Reports
    "report.request": {"workshop", "admin"},
    "report.list": {"workshop", "admin"},
    "report.generate": {"admin"},
    "report.reject": {"admin"},
    "report.yearly": {"workshop", "admin"},
    # Audit
    "audit.read": {"admin"},
}


def authorize(actor: Actor, operation: str) -> Actor:
    allowed = CAPABILITIES.get(operation)
    if allowed is None or actor.role not in allowed:
        raise AuthorizationError(
            f"Role '{actor.role}' may not perform {operation}",
            context={"actor_id": actor.id, "operation": operation},
        )
    return actor


def ensure_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise AuthorizationError("Admin role required", context={"actor_id": actor.id})


def ensure_workshop_access(actor: Actor, workshop_id: int) -> None:
    """Admins see everything; workshop staff and mechanics only their own workshop."""
    if actor.is_admin:
        return
    if actor.role in {"workshop", "mechanic"} and actor.workshop_id == workshop_id:
        return
    raise AuthorizationError("Workshop scope mismatch", context={"actor_id": actor.id, "workshop_id": workshop_id})


def ensure_workshop_manager(actor: Actor, workshop_id: int) -> None:
    if actor.is_admin:
        return
    if actor.role == "workshop" and actor.workshop_id == workshop_id:
        return
    raise AuthorizationError("Workshop manager role required", context={"actor_id": actor.id, "workshop_id": workshop_id})


def ensure_owner(actor: Actor, owner_id: int) -> None:
    if actor.is_admin:
        return
    if actor.role == "owner" and actor.id == owner_id:
        return
    raise AuthorizationError("Owner mismatch", context={"actor_id": actor.id, "owner_id": owner_id})


def can_touch_job(actor: Actor, workshop_id: int, assigned_mechanic_id: Optional[int]) -> bool:
    """
    - Admin can touch any job
    - Workshop manager can touch jobs of their workshop
    - Mechanic can only touch jobs assigned to them
    """
    if actor.is_admin:
        return True
    if actor.role == "workshop":
        return actor.workshop_id == workshop_id
    if actor.role == "mechanic":
        return assigned_mechanic_id is not None and assigned_mechanic_id == actor.id
    return False


def ensure_job_access(actor: Actor, job) -> None:
    if not can_touch_job(actor, job.workshop_id, job.assigned_mechanic_id):
        raise AuthorizationError("Not allowed to modify this job", context={"actor_id": actor.id, "job_id": job.id})


def actor_source(actor: Optional[Actor]) -> str:
    """Notification source label for an actor."""
    if actor is None:
        return "system"
    return actor.role
