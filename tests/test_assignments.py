import uuid
from datetime import timedelta

import pytest
from sqlalchemy import text

from conftest import NOW
from crewhub.config import settings
from crewhub.models.enums import UserRole, WorkerStatus
from crewhub.models.models import AssignedPersonnel, Notification, TimeEntry
from crewhub.services import assignments, conflicts
from crewhub.services.errors import (
    ConflictError,
    ForbiddenError,
    GoneError,
    InvalidStateError,
    NotFoundError,
)
from crewhub.services.slots import PlaceholderSlot


def test_assign_then_second_role_same_shift_conflicts(db, factory, admin):
    shift = factory.shift()
    worker = factory.user()

    result = assignments.assign(db, admin, shift.id, worker.id, "GL")
    assert result.assignment.user_id == worker.id
    assert result.assignment.status == WorkerStatus.assigned.value
    assert result.conflicts == []

    with pytest.raises(ConflictError):
        assignments.assign(db, admin, shift.id, worker.id, "SH")
    assert db.query(AssignedPersonnel).filter_by(shift_id=shift.id).count() == 1


def test_assign_reports_overlapping_shift_without_blocking(db, factory, admin):
    worker = factory.user()
    morning = factory.shift(start=NOW, hours=6)
    overlapping = factory.shift(start=NOW + timedelta(hours=4), hours=6)
    assignments.assign(db, admin, morning.id, worker.id, "GL")

    result = assignments.assign(db, admin, overlapping.id, worker.id, "GL")
    assert result.assignment.id is not None
    assert [c.shift_id for c in result.conflicts] == [morning.id]


def test_assign_ignore_conflicts_skips_check(db, factory, admin):
    worker = factory.user()
    first = factory.shift(start=NOW, hours=6)
    second = factory.shift(start=NOW + timedelta(hours=1), hours=6)
    assignments.assign(db, admin, first.id, worker.id, "GL")
    result = assignments.assign(db, admin, second.id, worker.id, "GL", ignore_conflicts=True)
    assert result.conflicts == []


def test_assign_requires_manager(db, factory):
    shift = factory.shift()
    employee = factory.user()
    with pytest.raises(ForbiddenError):
        assignments.assign(db, employee, shift.id, employee.id, "GL")


def test_replace_blocked_by_time_history(db, factory, admin):
    shift = factory.shift()
    old = factory.assignment(shift, factory.user(), role_code="SH")
    factory.time_entry(old, NOW, NOW + timedelta(hours=1))

    with pytest.raises(InvalidStateError, match="existing time entries"):
        assignments.replace(db, admin, shift.id, old.id, factory.user().id, "SH")


def test_replace_swaps_worker(db, factory, admin):
    shift = factory.shift()
    old = factory.assignment(shift, factory.user(), role_code="SH")
    old_id = old.id
    newcomer = factory.user()

    new = assignments.replace(db, admin, shift.id, old_id, newcomer.id, "SH")
    assert new.id != old_id
    assert new.shift_id == shift.id
    assert new.role_code == "SH"
    assert new.user_id == newcomer.id
    assert db.get(AssignedPersonnel, old_id) is None


def test_replace_same_worker_with_new_role(db, factory, admin):
    shift = factory.shift()
    worker = factory.user()
    old = factory.assignment(shift, worker, role_code="GL")
    new = assignments.replace(db, admin, shift.id, old.id, worker.id, "FO")
    assert new.role_code == "FO"
    assert db.query(AssignedPersonnel).filter_by(shift_id=shift.id).count() == 1


def test_replace_placeholder_only_creates(db, factory, admin):
    shift = factory.shift()
    existing = factory.assignment(shift, factory.user())
    new = assignments.replace(db, admin, shift.id, PlaceholderSlot("GL"), factory.user().id, "GL")
    assert new.id != existing.id
    assert db.query(AssignedPersonnel).filter_by(shift_id=shift.id).count() == 2


def test_replace_with_worker_already_on_shift_conflicts(db, factory, admin):
    shift = factory.shift()
    old = factory.assignment(shift, factory.user())
    other = factory.user()
    factory.assignment(shift, other)
    with pytest.raises(ConflictError):
        assignments.replace(db, admin, shift.id, old.id, other.id, "GL")


def test_unassign_placeholder_is_noop(db, factory, admin):
    shift = factory.shift()
    factory.assignment(shift, factory.user())
    assert assignments.unassign(db, admin, shift.id, PlaceholderSlot()) is None
    assert db.query(AssignedPersonnel).count() == 1


def test_unassign_refuses_clocked_in_worker(db, factory, admin):
    shift = factory.shift()
    a = factory.assignment(shift, factory.user(), status=WorkerStatus.clocked_in)
    factory.time_entry(a, NOW)
    with pytest.raises(InvalidStateError, match="clock them out first"):
        assignments.unassign(db, admin, shift.id, a.id)


def test_unassign_keeps_closed_time_history(db, factory, admin):
    shift = factory.shift()
    a = factory.assignment(shift, factory.user(), status=WorkerStatus.clocked_out)
    entry = factory.time_entry(a, NOW, NOW + timedelta(hours=2))
    entry_id = entry.id

    assignments.unassign(db, admin, shift.id, a.id)

    assert db.query(AssignedPersonnel).count() == 0
    kept = db.get(TimeEntry, entry_id)
    assert kept is not None
    assert kept.assigned_personnel_id is None
    assert kept.shift_id == shift.id


def test_unassign_unknown_assignment(db, factory, admin):
    shift = factory.shift()
    with pytest.raises(NotFoundError):
        assignments.unassign(db, admin, shift.id, uuid.uuid4())


def test_drop_more_than_a_day_out_deletes(db, factory):
    worker = factory.user()
    shift = factory.shift(start=NOW + timedelta(hours=24, minutes=1))
    a = factory.assignment(shift, worker)

    result = assignments.drop(db, worker, shift.id, a.id, now=NOW)
    assert result.outcome == assignments.DROP_DELETED
    assert db.query(AssignedPersonnel).count() == 0
    assert db.query(Notification).count() == 0


def test_drop_inside_a_day_opens_slot_and_notifies_pool(db, factory):
    worker = factory.user(UserRole.employee)
    chief = factory.user(UserRole.crew_chief)
    other_employee = factory.user(UserRole.employee)
    factory.user(UserRole.employee, is_active=False)
    factory.user(UserRole.company_user)
    factory.user(UserRole.admin)
    shift = factory.shift(start=NOW + timedelta(hours=24))
    a = factory.assignment(shift, worker, role_code="FO")

    result = assignments.drop(db, worker, shift.id, a.id, now=NOW)

    assert result.outcome == assignments.DROP_UP_FOR_GRABS
    db.refresh(a)
    assert a.user_id is None
    assert a.status == WorkerStatus.up_for_grabs.value
    recipients = {n.user_id for n in db.query(Notification).all()}
    assert recipients == {worker.id, chief.id, other_employee.id}
    assert result.notified == 3
    message = db.query(Notification).first().message
    assert "Fork Operator" in message
    assert "Stage A" in message


def test_cannot_drop_someone_elses_assignment(db, factory):
    shift = factory.shift()
    a = factory.assignment(shift, factory.user())
    with pytest.raises(ForbiddenError):
        assignments.drop(db, factory.user(), shift.id, a.id, now=NOW)


def test_claim_open_slot(db, factory):
    shift = factory.shift()
    slot = factory.assignment(shift, None, status=WorkerStatus.up_for_grabs)
    claimant = factory.user(UserRole.crew_chief)

    claimed = assignments.claim(db, claimant, shift.id, slot.id)
    assert claimed.user_id == claimant.id
    assert claimed.status == WorkerStatus.assigned.value
    assert assignments.list_open_slots(db, shift.id) == []


def test_claim_already_taken_is_gone(db, factory):
    shift = factory.shift()
    slot = factory.assignment(shift, None, status=WorkerStatus.up_for_grabs)
    assignments.claim(db, factory.user(), shift.id, slot.id)
    with pytest.raises(GoneError):
        assignments.claim(db, factory.user(), shift.id, slot.id)


def test_claim_when_already_on_shift_conflicts(db, factory):
    shift = factory.shift()
    worker = factory.user()
    factory.assignment(shift, worker)
    slot = factory.assignment(shift, None, status=WorkerStatus.up_for_grabs)
    with pytest.raises(ConflictError):
        assignments.claim(db, worker, shift.id, slot.id)


def test_claim_missing_slot_not_found(db, factory):
    shift = factory.shift()
    with pytest.raises(NotFoundError):
        assignments.claim(db, factory.user(), shift.id, uuid.uuid4())


def test_company_user_cannot_claim(db, factory):
    shift = factory.shift()
    slot = factory.assignment(shift, None, status=WorkerStatus.up_for_grabs)
    with pytest.raises(ForbiddenError):
        assignments.claim(db, factory.user(UserRole.company_user), shift.id, slot.id)


def test_mark_no_show(db, factory, admin):
    shift = factory.shift()
    a = factory.assignment(shift, factory.user())
    assert assignments.mark_no_show(db, admin, shift.id, a.id).status == WorkerStatus.no_show.value
    with pytest.raises(InvalidStateError):
        assignments.mark_no_show(db, admin, shift.id, a.id)


def test_no_show_refused_after_clock_in(db, factory, admin):
    shift = factory.shift()
    a = factory.assignment(shift, factory.user(), status=WorkerStatus.clocked_out)
    factory.time_entry(a, NOW, NOW + timedelta(hours=1))
    with pytest.raises(InvalidStateError):
        assignments.mark_no_show(db, admin, shift.id, a.id)


def test_drop_survives_bad_broadcast_url(db, factory, monkeypatch):
    monkeypatch.setattr(settings, "realtime_webhook_url", "http://[::1")
    worker = factory.user()
    shift = factory.shift(start=NOW + timedelta(hours=2))
    a = factory.assignment(shift, worker)

    result = assignments.drop(db, worker, shift.id, a.id, now=NOW)
    assert result.outcome == assignments.DROP_UP_FOR_GRABS
    db.refresh(a)
    assert a.status == WorkerStatus.up_for_grabs.value
    assert a.user_id is None


def test_drop_survives_recipient_lookup_failure(db, factory, monkeypatch):
    def unavailable(session):
        raise RuntimeError("store hiccup")

    monkeypatch.setattr(assignments, "pool_user_ids", unavailable)
    worker = factory.user()
    shift = factory.shift(start=NOW + timedelta(hours=2))
    a = factory.assignment(shift, worker)

    result = assignments.drop(db, worker, shift.id, a.id, now=NOW)
    assert result.outcome == assignments.DROP_UP_FOR_GRABS
    assert result.notified == 0
    assert result.assignment_id == a.id
    assert assignments.list_open_slots(db, shift.id)[0].id == a.id


def test_assign_proceeds_when_conflict_lookup_fails(db, factory, admin, monkeypatch):
    def broken_lookup(session, shift_id, user_id):
        session.execute(text("SELECT * FROM no_such_table"))

    monkeypatch.setattr(conflicts, "check_conflicts", broken_lookup)
    shift = factory.shift()
    worker = factory.user()

    result = assignments.assign(db, admin, shift.id, worker.id, "GL")
    assert result.conflicts == []
    assert result.assignment.user_id == worker.id


def test_assign_race_on_same_worker_is_conflict(db, factory, admin, monkeypatch):
    shift = factory.shift()
    worker = factory.user()
    factory.assignment(shift, worker)
    # The other request committed after this one's duplicate check ran
    monkeypatch.setattr(assignments, "_user_on_shift", lambda session, shift_id, user_id: None)

    with pytest.raises(ConflictError):
        assignments.assign(db, admin, shift.id, worker.id, "FO", ignore_conflicts=True)
    assert db.query(AssignedPersonnel).filter_by(shift_id=shift.id).count() == 1


def test_replace_race_on_same_worker_is_conflict(db, factory, admin, monkeypatch):
    shift = factory.shift()
    worker = factory.user()
    factory.assignment(shift, worker)
    other = factory.assignment(shift, factory.user(), role_code="FO")
    other_id = other.id
    monkeypatch.setattr(assignments, "_user_on_shift", lambda session, shift_id, user_id: None)

    with pytest.raises(ConflictError):
        assignments.replace(db, admin, shift.id, other_id, worker.id, "FO")
    assert db.query(AssignedPersonnel).filter_by(id=other_id).count() == 1


def test_claim_race_with_worker_already_on_shift_is_conflict(db, factory, monkeypatch):
    shift = factory.shift()
    worker = factory.user()
    factory.assignment(shift, worker)
    slot = factory.assignment(shift, None, status=WorkerStatus.up_for_grabs)
    monkeypatch.setattr(assignments, "_user_on_shift", lambda session, shift_id, user_id: None)

    with pytest.raises(ConflictError):
        assignments.claim(db, worker, shift.id, slot.id)
    db.refresh(slot)
    assert slot.user_id is None


def test_claim_lost_to_concurrent_claimant_is_gone(db, factory, monkeypatch):
    shift = factory.shift()
    slot = factory.assignment(shift, None, status=WorkerStatus.up_for_grabs)
    slot_id = slot.id
    rival = factory.user()
    rival_id = rival.id
    latecomer = factory.user()

    def taken_meanwhile(session, shift_id, user_id):
        session.query(AssignedPersonnel).filter(AssignedPersonnel.id == slot_id).update(
            {"user_id": rival_id, "status": WorkerStatus.assigned.value},
            synchronize_session=False,
        )
        session.commit()
        return None

    monkeypatch.setattr(assignments, "_user_on_shift", taken_meanwhile)
    with pytest.raises(GoneError):
        assignments.claim(db, latecomer, shift.id, slot_id)
    assert db.query(AssignedPersonnel).filter_by(id=slot_id).one().user_id == rival_id


def test_unlisted_vacant_slot_cannot_be_claimed(db, factory):
    shift = factory.shift()
    vacant = factory.assignment(shift, None, status=WorkerStatus.assigned)
    with pytest.raises(GoneError):
        assignments.claim(db, factory.user(), shift.id, vacant.id)
