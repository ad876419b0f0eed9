from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel


class InvoiceGenerate(BaseModel):
    job_id: int
    tax_rate: Optional[Decimal] = None
    labor_hours: Optional[Decimal] = None
    labor_rate: Optional[Decimal] = None
    labor_description: Optional[str] = None
    due_in_days: Optional[int] = None
    notes: Optional[str] = None


class InvoiceStatusUpdate(BaseModel):
    invoice_id: int
    status: str
    notes: Optional[str] = None


class InvoiceItemIn(BaseModel):
    description: str
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = Decimal("0.00")


class InvoiceItemsReplace(BaseModel):
    invoice_id: int
    items: List[InvoiceItemIn]
    # Optional client-side totals, checked against the recomputation
    subtotal: Optional[Decimal] = None
    tax: Optional[Decimal] = None
    total: Optional[Decimal] = None
