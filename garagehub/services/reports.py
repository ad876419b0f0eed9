"""
Report aggregator.
Monthly revenue roll-ups of invoice state, requested by workshops and
generated by admins.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import pytz
import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..db import transaction
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.models import Invoice, ReportRequest, money, utcnow
from .audit import create_audit_log
from .identity import Actor, IdentityDirectory
from .notifications import notify_workshop, publish
from .permissions import actor_source, ensure_admin, ensure_workshop_access, ensure_workshop_manager


logger = structlog.get_logger(__name__)

REPORT_STATUSES = {"pending", "generated", "rejected"}


def _validate_period(month, year) -> Tuple[int, int]:
    try:
        month, year = int(month), int(year)
    except (TypeError, ValueError):
        raise ValidationError("month and year must be integers")
    if month < 1 or month > 12:
        raise ValidationError("month must be between 1 and 12", context={"month": month})
    if year < 2000 or year > 9998:
        raise ValidationError("year out of range", context={"year": year})
    return month, year


def period_bounds(month: int, year: int, tz_name: Optional[str] = None) -> Tuple[datetime, datetime]:
    """
    Start (inclusive) and end (exclusive) of a calendar month in the given
    timezone, returned as naive UTC datetimes to match stored timestamps.
    """
    tz = pytz.timezone(tz_name or settings.tz_default)
    start_local = tz.localize(datetime(year, month, 1))
    if month == 12:
        end_local = tz.localize(datetime(year + 1, 1, 1))
    else:
        end_local = tz.localize(datetime(year, month + 1, 1))
    return (
        start_local.astimezone(pytz.utc).replace(tzinfo=None),
        end_local.astimezone(pytz.utc).replace(tzinfo=None),
    )


def summarize_period(db: Session, workshop_id: int, month: int, year: int) -> Dict:
    start, end = period_bounds(month, year)
    invoices = (
        db.query(Invoice)
        .filter(
            Invoice.workshop_id == workshop_id,
            Invoice.created_at >= start,
            Invoice.created_at < end,
        )
        .all()
    )
    total = sum((money(i.total) for i in invoices), Decimal("0.00"))
    paid = sum((money(i.total) for i in invoices if i.status == "paid"), Decimal("0.00"))
    return {
        "month": month,
        "invoice_count": len(invoices),
        "total_revenue": money(total),
        "paid_revenue": money(paid),
    }


def get_report_request(db: Session, request_id: int) -> ReportRequest:
    request = db.query(ReportRequest).filter(ReportRequest.id == request_id).first()
    if not request:
        raise NotFoundError("Report request not found", context={"request_id": request_id})
    return request


def _find_request(db: Session, workshop_id: int, month: int, year: int) -> Optional[ReportRequest]:
    return (
        db.query(ReportRequest)
        .filter(
            ReportRequest.workshop_id == workshop_id,
            ReportRequest.month == month,
            ReportRequest.year == year,
        )
        .first()
    )


def request_report(db: Session, actor: Actor, workshop_id: int, month, year) -> ReportRequest:
    """Upsert the (workshop, month, year) request back to pending; totals wait for generation."""
    ensure_workshop_manager(actor, workshop_id)
    month, year = _validate_period(month, year)
    IdentityDirectory(db).get_workshop(workshop_id)

    try:
        request = _upsert_request(db, actor, workshop_id, month, year)
    except ConflictError:
        # Lost an insert race; the row exists now
        request = _upsert_request(db, actor, workshop_id, month, year)

    logger.info("report_requested", request_id=request.id, workshop_id=workshop_id, month=month, year=year)
    return request


def _upsert_request(db: Session, actor: Actor, workshop_id: int, month: int, year: int) -> ReportRequest:
    with transaction(db, "Report request already exists for this period"):
        request = _find_request(db, workshop_id, month, year)
        if request is None:
            request = ReportRequest(workshop_id=workshop_id, month=month, year=year, status="pending")
            db.add(request)
            db.flush()
            action = "CREATE"
        else:
            request.status = "pending"
            request.created_at = utcnow()
            action = "REREQUEST"
        create_audit_log(db, "report_request", request.id, action, actor, context={"month": month, "year": year})
        for admin in IdentityDirectory(db).list_admins():
            publish(
                db,
                admin.id,
                "admin",
                actor_source(actor),
                "report_requested",
                "Monthly report requested",
                f"Workshop #{workshop_id} requested the {month:02d}/{year} report.",
            )
    return request


def generate(db: Session, actor: Actor, request_id: int) -> ReportRequest:
    """Compute and store the period totals. Safe to re-run; totals are overwritten."""
    ensure_admin(actor)
    request = get_report_request(db, request_id)
    if request.status == "rejected":
        raise ConflictError("Rejected report requests cannot be generated", context={"request_id": request.id})

    summary = summarize_period(db, request.workshop_id, request.month, request.year)
    with transaction(db):
        request.invoice_count = summary["invoice_count"]
        request.total_revenue = summary["total_revenue"]
        request.paid_revenue = summary["paid_revenue"]
        request.status = "generated"
        request.generated_at = utcnow()
        create_audit_log(
            db,
            "report_request",
            request.id,
            "GENERATE",
            actor,
            context={k: str(v) for k, v in summary.items()},
        )
        notify_workshop(
            db,
            request.workshop_id,
            "admin",
            "report_generated",
            "Monthly report ready",
            f"Your {request.month:02d}/{request.year} report is ready.",
        )

    logger.info(
        "report_generated",
        request_id=request.id,
        invoice_count=summary["invoice_count"],
        total_revenue=str(summary["total_revenue"]),
    )
    return request


def reject(db: Session, actor: Actor, request_id: int, admin_notes: Optional[str] = None) -> ReportRequest:
    ensure_admin(actor)
    request = get_report_request(db, request_id)
    if request.status != "pending":
        raise ConflictError("Only pending report requests can be rejected", context={"request_id": request.id})
    with transaction(db):
        request.status = "rejected"
        request.admin_notes = (admin_notes or "").strip() or None
        create_audit_log(db, "report_request", request.id, "REJECT", actor)
        notify_workshop(
            db,
            request.workshop_id,
            "admin",
            "report_rejected",
            "Report request rejected",
            f"Your {request.month:02d}/{request.year} report request was rejected.",
        )
    return request


def list_requests(
    db: Session,
    actor: Actor,
    *,
    workshop_id: Optional[int] = None,
    status: Optional[str] = None,
) -> List[ReportRequest]:
    if workshop_id is None:
        ensure_admin(actor)
    else:
        ensure_workshop_access(actor, workshop_id)
    if status and status not in REPORT_STATUSES:
        raise ValidationError(f"Unknown status '{status}'")
    query = db.query(ReportRequest)
    if workshop_id is not None:
        query = query.filter(ReportRequest.workshop_id == workshop_id)
    if status:
        query = query.filter(ReportRequest.status == status)
    return query.order_by(ReportRequest.year.desc(), ReportRequest.month.desc(), ReportRequest.id.desc()).all()


def yearly(db: Session, actor: Actor, workshop_id: int, year) -> Dict:
    ensure_workshop_access(actor, workshop_id)
    _, year = _validate_period(1, year)
    workshop = IdentityDirectory(db).get_workshop(workshop_id)
    return {
        "workshop_id": workshop.id,
        "workshop_name": workshop.name,
        "year": year,
        "months": [summarize_period(db, workshop.id, month, year) for month in range(1, 13)],
    }
