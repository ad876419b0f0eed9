from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import require_capability
from ..db import get_db
from ..schemas.notifications import NotificationsMarkRead
from ..services import notifications as notification_service
from ..services.identity import Actor


router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("")
def list_notifications(
    unread_only: bool = False,
    limit: int = 50,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("notification.read")),
):
    events = notification_service.list_events(db, actor, unread_only=unread_only, limit=min(max(limit, 1), 200))
    return [
        {
            "id": e.id,
            "source": e.source,
            "event_type": e.event_type,
            "title": e.title,
            "message": e.message,
            "created_at": e.created_at.isoformat() if e.created_at else None,
            "read": e.read_at is not None,
            "read_at": e.read_at.isoformat() if e.read_at else None,
        }
        for e in events
    ]


@router.post("/read")
def mark_notifications_read(
    body: NotificationsMarkRead,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("notification.read")),
):
    updated = notification_service.mark_read(db, actor, body.ids)
    return {"status": "ok", "updated": updated}
