from garagehub.services import audit, bookings, jobs

from .conftest import MECHANIC_ID


def test_transitions_leave_an_audit_trail(db, actors, make_booking):
    booking = make_booking()
    bookings.advance_status(db, actors["workshop"], booking.id, "confirmed")

    entries = audit.get_audit_logs(db, entity_type="booking", entity_id=booking.id)
    assert [e.action for e in entries] == ["STATUS", "CREATE"]
    latest = entries[0]
    assert latest.actor_id == actors["workshop"].id
    assert latest.actor_role == "workshop"
    assert latest.changes_json == {"status": {"before": "pending", "after": "confirmed"}}
    assert len(latest.integrity_hash) == 64


def test_assignment_records_only_changed_fields(db, actors, make_booking):
    job = jobs.create_from_booking(db, actors["workshop"], make_booking().id)
    jobs.assign_mechanic(db, actors["workshop"], job.id, MECHANIC_ID)

    (entry,) = [e for e in audit.get_audit_logs(db, entity_type="job", entity_id=job.id) if e.action == "ASSIGN"]
    assert entry.changes_json == {
        "status": {"before": "unassigned", "after": "assigned"},
        "assigned_mechanic_id": {"before": None, "after": MECHANIC_ID},
    }


def test_compute_diff_skips_unchanged_keys():
    assert audit.compute_diff({"a": 1, "b": 2}, {"a": 1, "b": 3, "c": 4}) == {
        "b": {"before": 2, "after": 3},
        "c": {"before": None, "after": 4},
    }


def test_audit_paging(db, actors, make_booking):
    for _ in range(3):
        make_booking()
    assert len(audit.get_audit_logs(db, entity_type="booking", limit=2)) == 2
    assert len(audit.get_audit_logs(db, entity_type="booking", limit=2, offset=2)) == 1
