"""
Invoice engine.

An invoice is derived from one completed job. Its totals are a pure function
of its items and tax rate and are recomputed on every mutation:

    item.total = quantity x unit_price
    subtotal   = sum(item.total)
    tax        = subtotal x tax_rate
    total      = subtotal + tax

Status graph (stored): draft -> pending -> approved|rejected, approved -> paid.
"pending" means awaiting release: the workshop has not yet approved its own
invoice. "overdue" is never stored; an approved invoice past its due date is
reported as overdue on read.
"""
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional

import structlog
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
from ..models.models import Invoice, InvoiceItem, Job, money, utcnow
from .audit import create_audit_log
from .identity import Actor
from .jobs import get_job
from .notifications import notify_owner
from .permissions import actor_source, ensure_workshop_manager


logger = structlog.get_logger(__name__)

INVOICE_STATUSES = {"draft", "pending", "approved", "rejected", "paid"}
INVOICE_TRANSITIONS = {
    "draft": {"pending"},
    "pending": {"approved", "rejected"},
    "approved": {"paid"},
    "rejected": set(),
    "paid": set(),
}

_OWNER_MESSAGES = {
    "approved": ("Invoice ready", "Invoice #{id} for {total} is ready for payment."),
    "rejected": ("Invoice withdrawn", "Invoice #{id} was withdrawn by the workshop."),
    "paid": ("Payment received", "Invoice #{id} has been marked as paid."),
}


def _epsilon() -> Decimal:
    return Decimal(str(settings.totals_epsilon))


def _to_decimal(value, field: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid {field}", context={field: str(value)})


def get_invoice(db: Session, invoice_id: int) -> Invoice:
    invoice = (
        db.query(Invoice)
        .options(selectinload(Invoice.items))
        .filter(Invoice.id == invoice_id)
        .first()
    )
    if not invoice:
        raise NotFoundError("Invoice not found", context={"invoice_id": invoice_id})
    return invoice


def recompute_totals(invoice: Invoice) -> Invoice:
    subtotal = Decimal("0.00")
    for item in invoice.items:
        item.total = money(Decimal(str(item.quantity)) * Decimal(str(item.unit_price)))
        subtotal += item.total
    invoice.subtotal = money(subtotal)
    invoice.tax = money(invoice.subtotal * Decimal(str(invoice.tax_rate or 0)))
    invoice.total = money(invoice.subtotal + invoice.tax)
    return invoice


def verify_totals(
    invoice: Invoice,
    *,
    subtotal=None,
    tax=None,
    total=None,
) -> None:
    """
    Check the stored invariant and, when given, caller-supplied totals
    against the recomputed values.
    """
    items_sum = money(sum((Decimal(str(i.total)) for i in invoice.items), Decimal("0.00")))
    if money(invoice.subtotal) != items_sum or money(invoice.total) != money(invoice.subtotal) + money(invoice.tax):
        raise InvariantViolationError(
            "Invoice totals drifted from items",
            context={"invoice_id": invoice.id, "subtotal": str(invoice.subtotal), "items_sum": str(items_sum)},
        )
    eps = _epsilon()
    for name, supplied, computed in (
        ("subtotal", subtotal, invoice.subtotal),
        ("tax", tax, invoice.tax),
        ("total", total, invoice.total),
    ):
        if supplied is None:
            continue
        if abs(_to_decimal(supplied, name) - Decimal(str(computed))) > eps:
            raise InvariantViolationError(
                f"Supplied {name} {supplied} disagrees with computed {computed}",
                context={"invoice_id": invoice.id, "field": name},
            )


def _validate_tax_rate(tax_rate) -> Decimal:
    rate = _to_decimal(tax_rate, "tax_rate")
    if rate < 0 or rate > 1:
        raise ValidationError("tax_rate must be between 0 and 1", context={"tax_rate": str(rate)})
    return rate


def _build_items(raw_items: Iterable[Dict]) -> List[InvoiceItem]:
    items = []
    for position, raw in enumerate(raw_items):
        description = (raw.get("description") or "").strip()
        if not description:
            raise ValidationError("Item description is required", context={"position": position})
        # Stored at cent precision; totals must come from the stored value
        quantity = money(_to_decimal(raw.get("quantity", 1), "quantity"))
        unit_price = _to_decimal(raw.get("unit_price", 0), "unit_price")
        if quantity <= 0 or unit_price < 0:
            raise ValidationError("Item quantity must be positive and unit price non-negative", context={"position": position})
        items.append(InvoiceItem(position=position, description=description, quantity=quantity, unit_price=money(unit_price)))
    return items


def generate_from_job(
    db: Session,
    actor: Actor,
    job_id: int,
    *,
    tax_rate=None,
    labor_hours=None,
    labor_rate=None,
    labor_description: Optional[str] = None,
    due_in_days: Optional[int] = None,
    notes: Optional[str] = None,
) -> Invoice:
    job = get_job(db, job_id)
    ensure_workshop_manager(actor, job.workshop_id)
    if job.status != "completed":
        raise ConflictError("Only completed jobs can be invoiced", context={"job_id": job.id, "status": job.status})
    if db.query(Invoice.id).filter(Invoice.job_id == job.id).first():
        raise ConflictError("An invoice already exists for this job", context={"job_id": job.id})

    rate = _validate_tax_rate(settings.default_tax_rate if tax_rate is None else tax_rate)
    raw_items = [
        {"description": part.name, "quantity": part.quantity, "unit_price": part.unit_cost}
        for part in job.parts
    ]
    if labor_hours is not None and labor_rate is not None:
        hours = _to_decimal(labor_hours, "labor_hours")
        if hours > 0:
            raw_items.append({
                "description": labor_description or f"Labor - {job.service_type}",
                "quantity": hours,
                "unit_price": labor_rate,
            })
    days = settings.invoice_due_days if due_in_days is None else int(due_in_days)

    with transaction(db, "An invoice already exists for this job"):
        now = utcnow()
        invoice = Invoice(
            job_id=job.id,
            owner_id=job.owner_id,
            workshop_id=job.workshop_id,
            tax_rate=rate,
            status="draft",
            created_at=now,
            due_date=now + timedelta(days=days),
            notes=notes,
        )
        invoice.items = _build_items(raw_items)
        recompute_totals(invoice)
        verify_totals(invoice)
        db.add(invoice)
        db.flush()
        create_audit_log(
            db,
            "invoice",
            invoice.id,
            "CREATE",
            actor,
            context={"job_id": job.id, "subtotal": str(invoice.subtotal), "total": str(invoice.total)},
        )

    logger.info("invoice_generated", invoice_id=invoice.id, job_id=job.id, total=str(invoice.total))
    return invoice


def set_status(db: Session, actor: Actor, invoice_id: int, status: str, notes: Optional[str] = None) -> Invoice:
    invoice = get_invoice(db, invoice_id)
    ensure_workshop_manager(actor, invoice.workshop_id)
    current = invoice.status
    if status == "overdue":
        raise InvalidTransitionError("Overdue is derived from the due date and cannot be set", context={"invoice_id": invoice.id})
    if status not in INVOICE_STATUSES or status not in INVOICE_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(
            f"Invoice cannot move from {invoice.effective_status()} to {status}",
            context={"invoice_id": invoice.id, "from": current, "to": status},
        )

    with transaction(db):
        invoice.status = status
        if status == "paid":
            invoice.paid_date = utcnow()
        if notes is not None:
            invoice.notes = notes or None
        # Rejected invoices keep their items for audit
        recompute_totals(invoice)
        verify_totals(invoice)
        create_audit_log(
            db,
            "invoice",
            invoice.id,
            "STATUS",
            actor,
            changes_json={"status": {"before": current, "after": status}},
        )
        if status in _OWNER_MESSAGES:
            title, template = _OWNER_MESSAGES[status]
            notify_owner(
                db,
                invoice.owner_id,
                actor_source(actor),
                f"invoice_{status}",
                title,
                template.format(id=invoice.id, total=f"{invoice.total:.2f}"),
            )

    logger.info("invoice_status_changed", invoice_id=invoice.id, before=current, after=status)
    return invoice


def replace_items(
    db: Session,
    actor: Actor,
    invoice_id: int,
    items: Iterable[Dict],
    *,
    subtotal=None,
    tax=None,
    total=None,
) -> Invoice:
    """Replace a draft invoice's items; supplied totals must match the recomputation."""
    invoice = get_invoice(db, invoice_id)
    ensure_workshop_manager(actor, invoice.workshop_id)
    if invoice.status != "draft":
        raise ConflictError("Only draft invoices can be edited", context={"invoice_id": invoice.id, "status": invoice.status})
    new_items = _build_items(items)

    with transaction(db):
        before_total = str(invoice.total)
        invoice.items = new_items
        recompute_totals(invoice)
        verify_totals(invoice, subtotal=subtotal, tax=tax, total=total)
        db.flush()
        create_audit_log(
            db,
            "invoice",
            invoice.id,
            "REPLACE_ITEMS",
            actor,
            changes_json={"total": {"before": before_total, "after": str(invoice.total)}},
        )

    logger.info("invoice_items_replaced", invoice_id=invoice.id, total=str(invoice.total))
    return invoice


def list_invoices(
    db: Session,
    actor: Actor,
    *,
    owner_id: Optional[int] = None,
    workshop_id: Optional[int] = None,
) -> List[Invoice]:
    if owner_id is None and workshop_id is None:
        raise ValidationError("owner_id or workshop_id required")
    if not actor.is_admin:
        if actor.role == "owner" and owner_id != actor.id:
            raise AuthorizationError("Owners may only list their own invoices")
        if actor.role == "workshop" and workshop_id != actor.workshop_id:
            raise AuthorizationError("Workshops may only list their own invoices")

    query = db.query(Invoice).options(selectinload(Invoice.items))
    if owner_id is not None:
        query = query.filter(Invoice.owner_id == owner_id)
    if workshop_id is not None:
        query = query.filter(Invoice.workshop_id == workshop_id)
    return query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()


def invoice_for_job(db: Session, job: Job) -> Optional[Invoice]:
    return db.query(Invoice).filter(Invoice.job_id == job.id).first()
