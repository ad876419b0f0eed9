from datetime import date, time
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from garagehub.db import Base
from garagehub.models.models import User, Vehicle, Workshop
from garagehub.services import bookings, jobs
from garagehub.services.identity import IdentityDirectory


ADMIN_ID = 1
MANAGER_ID = 4
MECHANIC_ID = 5
SECOND_MECHANIC_ID = 6
OWNER_ID = 7
OTHER_OWNER_ID = 8
WORKSHOP_ID = 3
OTHER_WORKSHOP_ID = 9
OTHER_MANAGER_ID = 10
OTHER_MECHANIC_ID = 11
VEHICLE_ID = 12


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    _seed(session)
    yield session
    session.close()


def _seed(session):
    session.add_all([
        Workshop(id=WORKSHOP_ID, name="Northside Auto", email="desk@northside.test"),
        Workshop(id=OTHER_WORKSHOP_ID, name="Harbour Garage"),
    ])
    session.add_all([
        User(id=ADMIN_ID, name="Ada Admin", email="admin@garagehub.test", role="admin"),
        User(id=MANAGER_ID, name="Wes Workshop", email="wes@northside.test", role="workshop", workshop_id=WORKSHOP_ID),
        User(id=MECHANIC_ID, name="Mia Mechanic", email="mia@northside.test", role="mechanic", workshop_id=WORKSHOP_ID),
        User(id=SECOND_MECHANIC_ID, name="Max Mechanic", email="max@northside.test", role="mechanic", workshop_id=WORKSHOP_ID),
        User(id=OWNER_ID, name="Olive Owner", email="olive@example.test", phone="555-0107", role="owner"),
        User(id=OTHER_OWNER_ID, name="Oscar Owner", email="oscar@example.test", role="owner"),
        User(id=OTHER_MANAGER_ID, name="Hal Harbour", email="hal@harbour.test", role="workshop", workshop_id=OTHER_WORKSHOP_ID),
        User(id=OTHER_MECHANIC_ID, name="Hana Harbour", email="hana@harbour.test", role="mechanic", workshop_id=OTHER_WORKSHOP_ID),
    ])
    session.add(Vehicle(id=VEHICLE_ID, owner_id=OWNER_ID, make="Toyota", model="Corolla", year=2018, plate_number="ABC-123"))
    session.commit()


@pytest.fixture
def actors(db):
    directory = IdentityDirectory(db)
    return {
        "admin": directory.get_actor(ADMIN_ID),
        "workshop": directory.get_actor(MANAGER_ID),
        "mechanic": directory.get_actor(MECHANIC_ID),
        "mechanic2": directory.get_actor(SECOND_MECHANIC_ID),
        "owner": directory.get_actor(OWNER_ID),
        "other_owner": directory.get_actor(OTHER_OWNER_ID),
        "other_workshop": directory.get_actor(OTHER_MANAGER_ID),
        "other_mechanic": directory.get_actor(OTHER_MECHANIC_ID),
    }


@pytest.fixture
def make_booking(db, actors):
    def _make(**overrides):
        fields = dict(
            owner_id=OWNER_ID,
            workshop_id=WORKSHOP_ID,
            service_type="Oil Change",
            preferred_date=date(2026, 2, 1),
            preferred_time=time(10, 0),
            vehicle_id=VEHICLE_ID,
        )
        fields.update(overrides)
        return bookings.submit_booking(db, actors["owner"], **fields)

    return _make


@pytest.fixture
def make_completed_job(db, actors, make_booking):
    """Booking-backed job walked to completed with two parts (55.00)."""
    def _make(mechanic="mechanic"):
        booking = make_booking()
        job = jobs.create_from_booking(db, actors["workshop"], booking.id)
        jobs.assign_mechanic(db, actors["workshop"], job.id, actors[mechanic].id)
        jobs.update_status(db, actors[mechanic], job.id, "in-progress")
        jobs.add_part(db, actors[mechanic], job.id, name="Filter", quantity=1, unit_cost=Decimal("15.00"))
        jobs.add_part(db, actors[mechanic], job.id, name="Oil", quantity=5, unit_cost=Decimal("8.00"))
        jobs.update_status(db, actors[mechanic], job.id, "completed")
        return job

    return _make
