from datetime import date, time
from decimal import Decimal

import pytest

from garagehub.errors import ConflictError
from garagehub.services import bookings, invoices, jobs, ratings

from .conftest import MECHANIC_ID, OWNER_ID, WORKSHOP_ID


def test_oil_change_from_booking_to_review(db, actors):
    booking = bookings.submit_booking(
        db,
        actors["owner"],
        owner_id=OWNER_ID,
        workshop_id=WORKSHOP_ID,
        service_type="Oil Change",
        preferred_date=date(2026, 2, 1),
        preferred_time=time(10, 0),
    )
    assert booking.status == "pending"
    assert bookings.advance_status(db, actors["workshop"], booking.id, "confirmed").status == "confirmed"

    job = jobs.create_from_booking(db, actors["workshop"], booking.id)
    assert job.status == "unassigned"
    assert jobs.assign_mechanic(db, actors["workshop"], job.id, MECHANIC_ID).status == "assigned"

    jobs.update_status(db, actors["mechanic"], job.id, "in-progress")
    jobs.add_part(db, actors["mechanic"], job.id, name="Filter", quantity=1, unit_cost="15.00")
    jobs.add_part(db, actors["mechanic"], job.id, name="Oil", quantity=5, unit_cost="8.00")
    assert jobs.parts_total(jobs.get_job(db, job.id)) == Decimal("55.00")
    assert jobs.update_status(db, actors["mechanic"], job.id, "completed").status == "completed"

    invoice = invoices.generate_from_job(db, actors["workshop"], job.id, tax_rate="0.1")
    assert invoice.subtotal == Decimal("55.00")
    assert invoice.total == Decimal("60.50")

    rating = ratings.submit_rating(db, actors["owner"], booking_id=booking.id, owner_id=OWNER_ID, rating=5, comment="Great")
    assert rating.rating == 5
    with pytest.raises(ConflictError):
        ratings.submit_rating(db, actors["owner"], booking_id=booking.id, owner_id=OWNER_ID, rating=5, comment="Great")

    assert bookings.get_booking(db, booking.id).status == "completed"
