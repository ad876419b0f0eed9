from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import require_capability
from ..db import get_db
from ..models.models import ReportRequest
from ..schemas.reports import ReportRequestAction, ReportRequestCreate
from ..services import reports as report_service
from ..services.identity import Actor


router = APIRouter(prefix="/api/reports", tags=["reports"])


def _serialize_report(request: ReportRequest) -> dict:
    return {
        "id": request.id,
        "workshop_id": request.workshop_id,
        "month": request.month,
        "year": request.year,
        "status": request.status,
        "invoice_count": request.invoice_count,
        "total_revenue": f"{request.total_revenue:.2f}",
        "paid_revenue": f"{request.paid_revenue:.2f}",
        "admin_notes": request.admin_notes,
        "created_at": request.created_at.isoformat() if request.created_at else None,
        "generated_at": request.generated_at.isoformat() if request.generated_at else None,
    }


@router.post("/request", status_code=201)
def request_report(
    body: ReportRequestCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("report.request")),
):
    return _serialize_report(report_service.request_report(db, actor, body.workshop_id, body.month, body.year))


@router.post("/generate")
def generate_report(
    body: ReportRequestAction,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("report.generate")),
):
    return _serialize_report(report_service.generate(db, actor, body.request_id))


@router.post("/reject")
def reject_report(
    body: ReportRequestAction,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("report.reject")),
):
    return _serialize_report(report_service.reject(db, actor, body.request_id, body.admin_notes))


@router.get("/requests")
def list_report_requests(
    workshop_id: Optional[int] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("report.list")),
):
    requests = report_service.list_requests(db, actor, workshop_id=workshop_id, status=status)
    return [_serialize_report(r) for r in requests]


@router.get("/yearly")
def yearly_report(
    year: int,
    workshop_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("report.yearly")),
):
    summary = report_service.yearly(db, actor, workshop_id, year)
    summary["months"] = [
        {
            **m,
            "total_revenue": f"{m['total_revenue']:.2f}",
            "paid_revenue": f"{m['paid_revenue']:.2f}",
        }
        for m in summary["months"]
    ]
    return summary
