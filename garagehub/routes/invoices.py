from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import require_capability
from ..db import get_db
from ..models.models import Invoice
from ..schemas.invoices import InvoiceGenerate, InvoiceItemsReplace, InvoiceStatusUpdate
from ..services import invoices as invoice_service
from ..services.identity import Actor


router = APIRouter(prefix="/api/invoices", tags=["invoices"])


def _serialize_invoice(invoice: Invoice) -> dict:
    return {
        "id": invoice.id,
        "job_id": invoice.job_id,
        "owner_id": invoice.owner_id,
        "workshop_id": invoice.workshop_id,
        "items": [
            {
                "id": item.id,
                "description": item.description,
                "quantity": f"{item.quantity:.2f}",
                "unit_price": f"{item.unit_price:.2f}",
                "total": f"{item.total:.2f}",
            }
            for item in invoice.items
        ],
        "subtotal": f"{invoice.subtotal:.2f}",
        "tax_rate": str(invoice.tax_rate),
        "tax": f"{invoice.tax:.2f}",
        "total": f"{invoice.total:.2f}",
        # Stored status plus the overdue overlay
        "status": invoice.effective_status(),
        "stored_status": invoice.status,
        "created_at": invoice.created_at.isoformat() if invoice.created_at else None,
        "due_date": invoice.due_date.isoformat() if invoice.due_date else None,
        "paid_date": invoice.paid_date.isoformat() if invoice.paid_date else None,
        "notes": invoice.notes,
    }


@router.post("/generate", status_code=201)
def generate_invoice(
    body: InvoiceGenerate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("invoice.generate")),
):
    invoice = invoice_service.generate_from_job(
        db,
        actor,
        body.job_id,
        tax_rate=body.tax_rate,
        labor_hours=body.labor_hours,
        labor_rate=body.labor_rate,
        labor_description=body.labor_description,
        due_in_days=body.due_in_days,
        notes=body.notes,
    )
    return _serialize_invoice(invoice)


@router.get("")
def list_invoices(
    owner_id: Optional[int] = None,
    workshop_id: Optional[int] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("invoice.list")),
):
    invoices = invoice_service.list_invoices(db, actor, owner_id=owner_id, workshop_id=workshop_id)
    return [_serialize_invoice(i) for i in invoices]


@router.post("/status")
def update_invoice_status(
    body: InvoiceStatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("invoice.set_status")),
):
    return _serialize_invoice(invoice_service.set_status(db, actor, body.invoice_id, body.status, body.notes))


@router.post("/items")
def replace_invoice_items(
    body: InvoiceItemsReplace,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability("invoice.replace_items")),
):
    invoice = invoice_service.replace_items(
        db,
        actor,
        body.invoice_id,
        [item.model_dump() for item in body.items],
        subtotal=body.subtotal,
        tax=body.tax,
        total=body.total,
    )
    return _serialize_invoice(invoice)
