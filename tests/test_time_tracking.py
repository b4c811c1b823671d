from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW
from crewhub.config import settings
from crewhub.models.enums import ShiftStatus, UserRole, WorkerStatus
from crewhub.models.models import TimeEntry
from crewhub.services import time_tracking
from crewhub.services.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    ValidationError,
)
from crewhub.services.time_rules import ensure_utc, round_time, total_rounded_minutes


def test_clock_in_out_guards(db, factory, admin):
    shift = factory.shift(start=NOW)
    a = factory.assignment(shift, factory.user())

    entry = time_tracking.clock_in(db, admin, shift.id, a.id, now=NOW)
    assert entry.entry_number == 1
    assert entry.is_active is True
    db.refresh(a)
    assert a.status == WorkerStatus.clocked_in.value

    with pytest.raises(ConflictError):
        time_tracking.clock_in(db, admin, shift.id, a.id, now=NOW + timedelta(seconds=5))

    with pytest.raises(ValidationError, match="1 minute"):
        time_tracking.clock_out(db, admin, shift.id, a.id, now=NOW + timedelta(seconds=30))

    closed = time_tracking.clock_out(db, admin, shift.id, a.id, now=NOW + timedelta(seconds=90))
    assert closed.is_active is False
    assert ensure_utc(closed.clock_out) == NOW + timedelta(seconds=90)
    db.refresh(a)
    assert a.status == WorkerStatus.clocked_out.value


def test_clock_out_before_clock_in_is_invalid(db, factory, admin):
    shift = factory.shift(start=NOW)
    a = factory.assignment(shift, factory.user())
    time_tracking.clock_in(db, admin, shift.id, a.id, now=NOW)
    with pytest.raises(ValidationError):
        time_tracking.clock_out(db, admin, shift.id, a.id, now=NOW - timedelta(minutes=5))


def test_clock_out_without_active_entry(db, factory, admin):
    shift = factory.shift(start=NOW)
    a = factory.assignment(shift, factory.user())
    with pytest.raises(InvalidStateError, match="No active clock-in"):
        time_tracking.clock_out(db, admin, shift.id, a.id, now=NOW)


def test_breaks_create_numbered_entries_and_first_clock_in_starts_shift(db, factory, admin):
    shift = factory.shift(start=NOW)
    a = factory.assignment(shift, factory.user())
    time_tracking.clock_in(db, admin, shift.id, a.id, now=NOW)
    db.refresh(shift)
    assert shift.status == ShiftStatus.active.value

    time_tracking.clock_out(db, admin, shift.id, a.id, now=NOW + timedelta(hours=2))
    second = time_tracking.clock_in(db, admin, shift.id, a.id, now=NOW + timedelta(hours=2, minutes=30))
    assert second.entry_number == 2
    assert db.query(TimeEntry).filter_by(assigned_personnel_id=a.id, is_active=True).count() == 1


def test_entry_cap(db, factory, admin, monkeypatch):
    monkeypatch.setattr(settings, "max_time_entries", 1)
    shift = factory.shift(start=NOW)
    a = factory.assignment(shift, factory.user())
    time_tracking.clock_in(db, admin, shift.id, a.id, now=NOW)
    time_tracking.clock_out(db, admin, shift.id, a.id, now=NOW + timedelta(hours=1))
    with pytest.raises(InvalidStateError, match="Maximum of 1"):
        time_tracking.clock_in(db, admin, shift.id, a.id, now=NOW + timedelta(hours=2))


@pytest.mark.parametrize("status", [WorkerStatus.no_show, WorkerStatus.shift_ended])
def test_clock_in_refused_for_terminal_workers(db, factory, admin, status):
    shift = factory.shift(start=NOW)
    a = factory.assignment(shift, factory.user(), status=status)
    with pytest.raises(InvalidStateError):
        time_tracking.clock_in(db, admin, shift.id, a.id, now=NOW)


def test_clock_in_refused_for_open_slot(db, factory, admin):
    shift = factory.shift(start=NOW)
    a = factory.assignment(shift, None, status=WorkerStatus.up_for_grabs)
    with pytest.raises(InvalidStateError):
        time_tracking.clock_in(db, admin, shift.id, a.id, now=NOW)


def test_worker_may_clock_self_but_not_others(db, factory):
    shift = factory.shift(start=NOW)
    worker = factory.user()
    a = factory.assignment(shift, worker)
    assert time_tracking.clock_in(db, worker, shift.id, a.id, now=NOW).entry_number == 1

    b = factory.assignment(shift, factory.user())
    with pytest.raises(ForbiddenError):
        time_tracking.clock_in(db, worker, shift.id, b.id, now=NOW)


def test_end_shift_closes_active_entry_and_is_idempotent(db, factory, admin):
    shift = factory.shift(start=NOW)
    a = factory.assignment(shift, factory.user())
    time_tracking.clock_in(db, admin, shift.id, a.id, now=NOW)

    ended = time_tracking.end_shift(db, admin, shift.id, a.id, now=NOW + timedelta(hours=3))
    assert ended.status == WorkerStatus.shift_ended.value
    entry = db.query(TimeEntry).filter_by(assigned_personnel_id=a.id).one()
    assert entry.is_active is False
    assert ensure_utc(entry.clock_out) == NOW + timedelta(hours=3)

    again = time_tracking.end_shift(db, admin, shift.id, a.id, now=NOW + timedelta(hours=4))
    assert again.status == WorkerStatus.shift_ended.value
    entry = db.query(TimeEntry).filter_by(assigned_personnel_id=a.id).one()
    assert ensure_utc(entry.clock_out) == NOW + timedelta(hours=3)


def test_master_start_break_clocks_out_everyone_on_the_clock(db, factory, admin):
    shift = factory.shift(start=NOW)
    on_clock = [factory.assignment(shift, factory.user()) for _ in range(2)]
    idle = factory.assignment(shift, factory.user())
    for a in on_clock:
        time_tracking.clock_in(db, admin, shift.id, a.id, now=NOW)

    affected = time_tracking.master_start_break(db, admin, shift.id, now=NOW + timedelta(hours=2))
    assert {a.id for a in affected} == {a.id for a in on_clock}
    assert db.query(TimeEntry).filter_by(shift_id=shift.id, is_active=True).count() == 0
    db.refresh(idle)
    assert idle.status == WorkerStatus.assigned.value


def test_master_start_break_requires_manager(db, factory):
    shift = factory.shift(start=NOW)
    with pytest.raises(ForbiddenError):
        time_tracking.master_start_break(db, factory.user(UserRole.employee), shift.id, now=NOW)


def test_master_end_shift_only_ends_workers_who_clocked_in(db, factory, admin):
    shift = factory.shift(start=NOW)
    worked = factory.assignment(shift, factory.user())
    never_came = factory.assignment(shift, factory.user())
    time_tracking.clock_in(db, admin, shift.id, worked.id, now=NOW)

    affected = time_tracking.master_end_shift(db, admin, shift.id, now=NOW + timedelta(hours=8))
    assert [a.id for a in affected] == [worked.id]
    db.refresh(never_came)
    assert never_came.status == WorkerStatus.assigned.value


def test_master_end_shift_with_nobody_clocked_in(db, factory, admin):
    shift = factory.shift(start=NOW)
    factory.assignment(shift, factory.user())
    with pytest.raises(InvalidStateError):
        time_tracking.master_end_shift(db, admin, shift.id, now=NOW)


def test_hours_are_rounded_at_read_time(db, factory, admin):
    shift = factory.shift(start=NOW)
    a = factory.assignment(shift, factory.user())
    clock_in = datetime(2026, 3, 10, 9, 7, tzinfo=timezone.utc)
    time_tracking.clock_in(db, admin, shift.id, a.id, now=clock_in)
    time_tracking.clock_out(db, admin, shift.id, a.id, now=datetime(2026, 3, 10, 11, 52, tzinfo=timezone.utc))

    hours = time_tracking.assignment_hours(db, admin, shift.id, a.id)
    assert hours.total_minutes == 180
    assert hours.total_hours == 3.0
    # Stored timestamps are untouched
    assert ensure_utc(hours.entries[0].clock_in) == clock_in


def test_round_time_boundaries():
    t = datetime(2026, 3, 10, 9, 7, 30, tzinfo=timezone.utc)
    assert round_time(t, "down") == datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)
    assert round_time(t, "up") == datetime(2026, 3, 10, 9, 15, tzinfo=timezone.utc)
    exact = datetime(2026, 3, 10, 9, 45, tzinfo=timezone.utc)
    assert round_time(exact, "up") == exact
    assert round_time(datetime(2026, 3, 10, 23, 50, tzinfo=timezone.utc), "up") == datetime(2026, 3, 11, 0, 0, tzinfo=timezone.utc)
    with pytest.raises(ValueError):
        round_time(t, "sideways")


def test_open_entries_are_not_summed(db, factory):
    shift = factory.shift(start=NOW)
    a = factory.assignment(shift, factory.user())
    closed = factory.time_entry(a, NOW, NOW + timedelta(hours=1), entry_number=1)
    open_entry = factory.time_entry(a, NOW + timedelta(hours=2), entry_number=2)
    assert total_rounded_minutes([closed, open_entry]) == 60


def test_concurrent_clock_in_hits_one_active_entry_index(db, factory, admin, monkeypatch):
    shift = factory.shift(start=NOW)
    a = factory.assignment(shift, factory.user(), status=WorkerStatus.clocked_in)
    factory.time_entry(a, NOW)
    # The other request's entry landed after this one looked for an open entry
    monkeypatch.setattr(time_tracking, "get_active_entry", lambda session, assignment_id: None)

    with pytest.raises(ConflictError):
        time_tracking.clock_in(db, admin, shift.id, a.id, now=NOW + timedelta(minutes=5))
    assert db.query(TimeEntry).filter_by(assigned_personnel_id=a.id).count() == 1
