"""
Notification router.
Fans workflow transitions out to role-scoped inbox rows.
"""
from typing import Iterable, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..errors import ValidationError
from ..models.models import NotificationEvent, utcnow
from .identity import Actor


logger = structlog.get_logger(__name__)

TARGET_ROLES = {"owner", "workshop", "mechanic", "admin"}
SOURCES = {"owner", "mechanic", "workshop", "admin", "system"}


def publish(
    db: Session,
    target_id: int,
    target_role: str,
    source: str,
    event_type: str,
    title: str,
    message: str,
) -> NotificationEvent:
    """
    Insert an inbox row in the caller's transaction.

    Only flushed here; the row commits with the transition that produced
    it, so a committed transition never loses its notification.
    """
    if target_role not in TARGET_ROLES:
        raise ValidationError(f"Unknown notification target role '{target_role}'")
    if source not in SOURCES:
        raise ValidationError(f"Unknown notification source '{source}'")
    if target_id is None:
        raise ValidationError("Notification target is required")

    event = NotificationEvent(
        target_id=target_id,
        target_role=target_role,
        source=source,
        event_type=event_type,
        title=title,
        message=message,
    )
    db.add(event)
    db.flush()
    logger.info(
        "notification_published",
        notification_id=event.id,
        target_role=target_role,
        target_id=target_id,
        event_type=event_type,
    )
    return event


def notify_owner(db: Session, owner_id: int, source: str, event_type: str, title: str, message: str) -> NotificationEvent:
    return publish(db, owner_id, "owner", source, event_type, title, message)


def notify_workshop(db: Session, workshop_id: int, source: str, event_type: str, title: str, message: str) -> NotificationEvent:
    return publish(db, workshop_id, "workshop", source, event_type, title, message)


def notify_mechanic(db: Session, mechanic_id: int, source: str, event_type: str, title: str, message: str) -> NotificationEvent:
    return publish(db, mechanic_id, "mechanic", source, event_type, title, message)


def _inbox_key(actor: Actor):
    # Workshop staff share the workshop inbox
    if actor.role == "workshop":
        return "workshop", actor.workshop_id
    return actor.role, actor.id


def _inbox_query(db: Session, actor: Actor):
    role, target_id = _inbox_key(actor)
    return db.query(NotificationEvent).filter(
        NotificationEvent.target_role == role,
        NotificationEvent.target_id == target_id,
    )


def list_events(db: Session, actor: Actor, unread_only: bool = False, limit: int = 50) -> List[NotificationEvent]:
    query = _inbox_query(db, actor)
    if unread_only:
        query = query.filter(NotificationEvent.read_at.is_(None))
    return (
        query.order_by(NotificationEvent.created_at.desc(), NotificationEvent.id.desc())
        .limit(limit)
        .all()
    )


def mark_read(db: Session, actor: Actor, event_ids: Optional[Iterable[int]] = None) -> int:
    """
    Mark the given events (or every unread event when ``event_ids`` is None)
    as read for this actor. Events owned by someone else are ignored.

    Returns:
        Number of events updated
    """
    query = _inbox_query(db, actor).filter(NotificationEvent.read_at.is_(None))
    if event_ids is not None:
        ids = [int(i) for i in event_ids]
        if not ids:
            return 0
        query = query.filter(NotificationEvent.id.in_(ids))

    now = utcnow()
    events = query.all()
    for event in events:
        event.read_at = now
    db.commit()
    return len(events)
