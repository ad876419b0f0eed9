from datetime import timedelta
from decimal import Decimal

import pytest

from garagehub.errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    InvariantViolationError,
    ValidationError,
)
from garagehub.models.models import utcnow
from garagehub.services import invoices, jobs, notifications

from .conftest import OWNER_ID, WORKSHOP_ID


def _invoice(db, actors, make_completed_job, **kwargs):
    job = make_completed_job()
    return invoices.generate_from_job(db, actors["workshop"], job.id, **kwargs)


def test_generate_from_parts(db, actors, make_completed_job):
    invoice = _invoice(db, actors, make_completed_job, tax_rate=Decimal("0.1"))

    assert invoice.status == "draft"
    assert [(i.description, i.total) for i in invoice.items] == [
        ("Filter", Decimal("15.00")),
        ("Oil", Decimal("40.00")),
    ]
    assert invoice.subtotal == Decimal("55.00")
    assert invoice.tax == Decimal("5.50")
    assert invoice.total == Decimal("60.50")
    assert invoice.due_date is not None


def test_generate_with_labor_line(db, actors, make_completed_job):
    invoice = _invoice(
        db,
        actors,
        make_completed_job,
        tax_rate="0",
        labor_hours="1.5",
        labor_rate="80",
    )
    assert invoice.items[-1].description == "Labor - Oil Change"
    assert invoice.items[-1].total == Decimal("120.00")
    assert invoice.subtotal == Decimal("175.00")
    assert invoice.total == Decimal("175.00")


def test_generate_defaults_to_configured_tax(db, actors, make_completed_job):
    invoice = _invoice(db, actors, make_completed_job)
    assert invoice.tax == Decimal("0.00")
    assert invoice.total == invoice.subtotal


def test_generate_requires_completed_job(db, actors, make_booking):
    booking = make_booking()
    job = jobs.create_from_booking(db, actors["workshop"], booking.id)
    with pytest.raises(ConflictError):
        invoices.generate_from_job(db, actors["workshop"], job.id)


def test_one_invoice_per_job(db, actors, make_completed_job):
    job = make_completed_job()
    invoices.generate_from_job(db, actors["workshop"], job.id)
    with pytest.raises(ConflictError):
        invoices.generate_from_job(db, actors["workshop"], job.id)


@pytest.mark.parametrize("rate", ["-0.1", "1.5", "abc"])
def test_invalid_tax_rate(db, actors, make_completed_job, rate):
    job = make_completed_job()
    with pytest.raises(ValidationError):
        invoices.generate_from_job(db, actors["workshop"], job.id, tax_rate=rate)


def test_status_flow_to_paid(db, actors, make_completed_job):
    invoice = _invoice(db, actors, make_completed_job)
    for status in ("pending", "approved", "paid"):
        invoice = invoices.set_status(db, actors["workshop"], invoice.id, status)
    assert invoice.status == "paid"
    assert invoice.paid_date is not None

    events = [e.event_type for e in notifications.list_events(db, actors["owner"])]
    assert "invoice_approved" in events
    assert "invoice_paid" in events


@pytest.mark.parametrize("status", ["paid", "approved", "overdue", "draft", "void"])
def test_illegal_status_from_draft(db, actors, make_completed_job, status):
    invoice = _invoice(db, actors, make_completed_job)
    with pytest.raises(InvalidTransitionError):
        invoices.set_status(db, actors["workshop"], invoice.id, status)


def test_rejected_is_terminal(db, actors, make_completed_job):
    invoice = _invoice(db, actors, make_completed_job)
    invoices.set_status(db, actors["workshop"], invoice.id, "pending")
    invoices.set_status(db, actors["workshop"], invoice.id, "rejected")
    with pytest.raises(InvalidTransitionError):
        invoices.set_status(db, actors["workshop"], invoice.id, "approved")


def test_overdue_is_derived(db, actors, make_completed_job):
    invoice = _invoice(db, actors, make_completed_job)
    invoices.set_status(db, actors["workshop"], invoice.id, "pending")
    invoice = invoices.set_status(db, actors["workshop"], invoice.id, "approved")

    assert invoice.effective_status() == "approved"
    assert invoice.effective_status(now=invoice.due_date + timedelta(days=1)) == "overdue"
    assert invoice.status == "approved"

    invoice.due_date = utcnow() - timedelta(days=1)
    db.commit()
    listed = invoices.list_invoices(db, actors["owner"], owner_id=OWNER_ID)
    assert [i.effective_status() for i in listed] == ["overdue"]

    # Overdue invoices can still be paid
    invoice = invoices.set_status(db, actors["workshop"], invoice.id, "paid")
    assert invoice.effective_status() == "paid"


def test_replace_items_recomputes(db, actors, make_completed_job):
    invoice = _invoice(db, actors, make_completed_job, tax_rate="0.1")
    invoice = invoices.replace_items(
        db,
        actors["workshop"],
        invoice.id,
        [
            {"description": "Filter", "quantity": 1, "unit_price": "15.00"},
            {"description": "Labour", "quantity": 2, "unit_price": "50.00"},
        ],
        subtotal="115.00",
        tax="11.50",
        total="126.505",
    )
    assert invoice.subtotal == Decimal("115.00")
    assert invoice.total == Decimal("126.50")
    assert [i.position for i in invoice.items] == [0, 1]


def test_replace_items_with_disagreeing_totals_rolls_back(db, actors, make_completed_job):
    invoice = _invoice(db, actors, make_completed_job)
    with pytest.raises(InvariantViolationError):
        invoices.replace_items(
            db,
            actors["workshop"],
            invoice.id,
            [{"description": "Labour", "quantity": 1, "unit_price": "100.00"}],
            total="90.00",
        )
    invoice = invoices.get_invoice(db, invoice.id)
    assert invoice.total == Decimal("55.00")
    assert len(invoice.items) == 2


def test_replace_items_only_on_drafts(db, actors, make_completed_job):
    invoice = _invoice(db, actors, make_completed_job)
    invoices.set_status(db, actors["workshop"], invoice.id, "pending")
    with pytest.raises(ConflictError):
        invoices.replace_items(db, actors["workshop"], invoice.id, [{"description": "X", "quantity": 1, "unit_price": 1}])


def test_replace_items_validates_lines(db, actors, make_completed_job):
    invoice = _invoice(db, actors, make_completed_job)
    with pytest.raises(ValidationError):
        invoices.replace_items(db, actors["workshop"], invoice.id, [{"description": "", "quantity": 1}])
    with pytest.raises(ValidationError):
        invoices.replace_items(db, actors["workshop"], invoice.id, [{"description": "X", "quantity": 0}])


def test_verify_totals_detects_drift(db, actors, make_completed_job):
    invoice = _invoice(db, actors, make_completed_job)
    invoice.subtotal = Decimal("1.00")
    with pytest.raises(InvariantViolationError):
        invoices.verify_totals(invoice)
    db.rollback()


def test_listing_scope(db, actors, make_completed_job):
    invoice = _invoice(db, actors, make_completed_job)
    assert [i.id for i in invoices.list_invoices(db, actors["workshop"], workshop_id=WORKSHOP_ID)] == [invoice.id]
    assert [i.id for i in invoices.list_invoices(db, actors["admin"], owner_id=OWNER_ID)] == [invoice.id]
    with pytest.raises(AuthorizationError):
        invoices.list_invoices(db, actors["other_owner"], owner_id=OWNER_ID)
    with pytest.raises(AuthorizationError):
        invoices.set_status(db, actors["other_workshop"], invoice.id, "pending")
    with pytest.raises(ValidationError):
        invoices.list_invoices(db, actors["admin"])


def test_fractional_labor_hours_total_is_stable_across_mutations(db, actors, make_completed_job):
    invoice = _invoice(db, actors, make_completed_job, tax_rate="0", labor_hours="1.333", labor_rate="90")
    labor = invoice.items[-1]
    assert labor.quantity == Decimal("1.33")
    assert labor.total == Decimal("119.70")
    generated_total = invoice.total
    assert generated_total == Decimal("174.70")

    db.expire_all()
    invoice = invoices.set_status(db, actors["workshop"], invoice.id, "pending")
    assert invoice.total == generated_total


def test_quantity_rounding_to_zero_is_rejected(db, actors, make_completed_job):
    invoice = _invoice(db, actors, make_completed_job)
    with pytest.raises(ValidationError):
        invoices.replace_items(
            db, actors["workshop"], invoice.id, [{"description": "Rag", "quantity": "0.001", "unit_price": 1}]
        )
