import pytest
from sqlalchemy.exc import IntegrityError

from garagehub.db import is_unique_violation, transaction
from garagehub.errors import ConflictError
from garagehub.models.models import Invoice, Job, Rating, RatingRequest

from .conftest import MANAGER_ID, OWNER_ID, WORKSHOP_ID


def _insert(db, row, detail="duplicate"):
    with transaction(db, detail):
        db.add(row)
        db.flush()


def test_second_job_for_booking_is_a_conflict(db, make_completed_job):
    job = make_completed_job()
    with pytest.raises(ConflictError) as exc:
        _insert(
            db,
            Job(booking_id=job.booking_id, owner_id=OWNER_ID, workshop_id=WORKSHOP_ID, service_type="Oil change"),
            "Booking already has a job",
        )
    assert exc.value.message == "Booking already has a job"
    assert db.query(Job).count() == 1


def test_second_invoice_for_job_is_a_conflict(db, make_completed_job):
    job = make_completed_job()
    _insert(db, Invoice(job_id=job.id, owner_id=OWNER_ID, workshop_id=WORKSHOP_ID))
    with pytest.raises(ConflictError):
        _insert(db, Invoice(job_id=job.id, owner_id=OWNER_ID, workshop_id=WORKSHOP_ID))
    assert db.query(Invoice).count() == 1


def test_second_rating_for_booking_is_a_conflict(db, make_completed_job):
    job = make_completed_job()
    _insert(db, Rating(booking_id=job.booking_id, owner_id=OWNER_ID, workshop_id=WORKSHOP_ID, rating=4))
    with pytest.raises(ConflictError):
        _insert(db, Rating(booking_id=job.booking_id, owner_id=OWNER_ID, workshop_id=WORKSHOP_ID, rating=2))
    assert db.query(Rating).count() == 1


def test_only_one_pending_request_per_rating(db, make_completed_job):
    job = make_completed_job()
    rating = Rating(booking_id=job.booking_id, owner_id=OWNER_ID, workshop_id=WORKSHOP_ID, rating=1)
    _insert(db, rating)
    _insert(db, RatingRequest(rating_id=rating.id, workshop_id=WORKSHOP_ID, requested_by=MANAGER_ID, status="rejected"))
    _insert(db, RatingRequest(rating_id=rating.id, workshop_id=WORKSHOP_ID, requested_by=MANAGER_ID, status="pending"))

    with pytest.raises(ConflictError):
        _insert(db, RatingRequest(rating_id=rating.id, workshop_id=WORKSHOP_ID, requested_by=MANAGER_ID, status="pending"))
    assert db.query(RatingRequest).filter(RatingRequest.status == "pending").count() == 1


def test_not_null_failure_is_not_a_conflict(db):
    with pytest.raises(IntegrityError):
        _insert(db, Job(owner_id=None, workshop_id=WORKSHOP_ID, service_type="Oil change"))
    # Session was rolled back and stays usable
    assert db.query(Job).count() == 0


class _DriverError(Exception):
    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


@pytest.mark.parametrize(
    "orig, expected",
    [
        (_DriverError("duplicate key value violates unique constraint", pgcode="23505"), True),
        (_DriverError("UNIQUE constraint failed: jobs.booking_id"), True),
        (_DriverError("insert or update violates foreign key constraint", pgcode="23503"), False),
        (_DriverError("NOT NULL constraint failed: jobs.owner_id"), False),
    ],
)
def test_is_unique_violation(orig, expected):
    assert is_unique_violation(IntegrityError("INSERT ...", {}, orig)) is expected
