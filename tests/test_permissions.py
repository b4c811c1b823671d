import uuid

import pytest

from crewhub.models.enums import PermissionScope, UserRole
from crewhub.services.crew_chief_permissions import grant_permission, list_permissions, revoke_permission
from crewhub.services.errors import ConflictError, ForbiddenError, NotFoundError
from crewhub.services.permissions import can_manage_shift


@pytest.fixture
def shift(factory):
    return factory.shift()


def test_admin_and_staff_manage_any_shift(db, factory, admin, shift):
    assert can_manage_shift(db, admin, shift)
    assert can_manage_shift(db, factory.user(UserRole.staff), shift.id)


def test_inactive_admin_cannot_manage(db, factory, shift):
    assert not can_manage_shift(db, factory.user(UserRole.admin, is_active=False), shift)


def test_company_user_scoped_to_own_company(db, factory, shift):
    db.refresh(shift)
    own = factory.user(UserRole.company_user, company=shift.job.company)
    other = factory.user(UserRole.company_user, company=factory.company())
    assert can_manage_shift(db, own, shift)
    assert not can_manage_shift(db, other, shift)


def test_crew_chief_running_the_shift(db, factory, shift):
    chief = factory.user(UserRole.crew_chief)
    assert not can_manage_shift(db, chief, shift)
    factory.assignment(shift, chief, role_code="CC")
    assert can_manage_shift(db, chief, shift)


def test_crew_chief_working_another_role_does_not_manage(db, factory, shift):
    chief = factory.user(UserRole.crew_chief)
    factory.assignment(shift, chief, role_code="GL")
    assert not can_manage_shift(db, chief, shift)


def test_employee_cannot_manage(db, factory, shift):
    assert not can_manage_shift(db, factory.user(UserRole.employee), shift)


@pytest.mark.parametrize("scope", list(PermissionScope))
def test_grant_at_any_scope_gives_management(db, factory, admin, shift, scope):
    db.refresh(shift)
    chief = factory.user(UserRole.crew_chief)
    target = {
        PermissionScope.shift: shift.id,
        PermissionScope.job: shift.job_id,
        PermissionScope.client: shift.job.company_id,
    }[scope]

    grant = grant_permission(db, admin, chief.id, scope.value, target)
    assert can_manage_shift(db, chief, shift)

    revoke_permission(db, admin, grant.id)
    assert not can_manage_shift(db, chief, shift)


def test_grant_on_other_job_does_not_leak(db, factory, admin, shift):
    chief = factory.user(UserRole.crew_chief)
    other_job = factory.job()
    grant_permission(db, admin, chief.id, "job", other_job.id)
    assert not can_manage_shift(db, chief, shift)


def test_grants_are_admin_only(db, factory, shift):
    chief = factory.user(UserRole.crew_chief)
    staff = factory.user(UserRole.staff)
    with pytest.raises(ForbiddenError):
        grant_permission(db, staff, chief.id, "shift", shift.id)
    with pytest.raises(ForbiddenError):
        list_permissions(db, chief)


def test_duplicate_grant_conflicts(db, factory, admin, shift):
    chief = factory.user(UserRole.crew_chief)
    grant_permission(db, admin, chief.id, "Shift", shift.id)
    with pytest.raises(ConflictError):
        grant_permission(db, admin, chief.id, "shift", shift.id)
    assert len(list_permissions(db, admin, user_id=chief.id)) == 1


def test_grant_on_missing_target(db, factory, admin):
    chief = factory.user(UserRole.crew_chief)
    with pytest.raises(NotFoundError):
        grant_permission(db, admin, chief.id, "job", uuid.uuid4())
    with pytest.raises(NotFoundError):
        revoke_permission(db, admin, uuid.uuid4())
