from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import require_capability
from ..db import get_db
from ..services.audit import get_audit_logs
from ..services.identity import Actor


router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("")
def list_audit_logs(
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    limit: int = 100,
    offset: int = 0,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("audit.read")),
):
    """Workflow audit trail, newest first"""
    logs = get_audit_logs(
        db,
        entity_type=entity_type,
        entity_id=entity_id,
        limit=min(max(limit, 1), 500),
        offset=max(offset, 0),
    )
    return [
        {
            "id": log.id,
            "entity_type": log.entity_type,
            "entity_id": log.entity_id,
            "action": log.action,
            "actor_id": log.actor_id,
            "actor_role": log.actor_role,
            "changes": log.changes_json,
            "context": log.context,
            "timestamp_utc": log.timestamp_utc.isoformat() if log.timestamp_utc else None,
            "integrity_hash": log.integrity_hash,
        }
        for log in logs
    ]
