import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("RATE_LIMIT", "100000/minute")
os.environ.setdefault("STORAGE_DIR", tempfile.mkdtemp(prefix="crewhub-storage-"))

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from crewhub.auth.security import create_access_token
from crewhub.db import Base, get_db
from crewhub.main import app
from crewhub.models.enums import UserRole, WorkerStatus
from crewhub.models.models import (
    AssignedPersonnel,
    Company,
    Job,
    Shift,
    TimeEntry,
    User,
)


NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


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
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    try:
        yield session
    finally:
        session.close()


class Factory:
    def __init__(self, db):
        self.db = db
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    def company(self, name=None, tz="America/Los_Angeles"):
        company = Company(name=name or f"Company {self._next()}", timezone=tz)
        self.db.add(company)
        self.db.commit()
        return company

    def job(self, company=None, name=None, location="Main Hall"):
        company = company or self.company()
        job = Job(company_id=company.id, name=name or f"Job {self._next()}", location=location)
        self.db.add(job)
        self.db.commit()
        return job

    def user(self, role=UserRole.employee, company=None, name=None, is_active=True):
        n = self._next()
        user = User(
            name=name or f"{role.value} {n}",
            email=f"user{n}@example.com",
            role=role.value,
            company_id=company.id if company else None,
            is_active=is_active,
        )
        self.db.add(user)
        self.db.commit()
        return user

    def shift(self, job=None, start=None, hours=8, requested_workers=None, location="Stage A"):
        job = job or self.job()
        start = start or NOW + timedelta(days=2)
        shift = Shift(
            job_id=job.id,
            date=start.date(),
            start_time=start,
            end_time=start + timedelta(hours=hours),
            location=location,
            requested_workers=requested_workers,
        )
        self.db.add(shift)
        self.db.commit()
        return shift

    def assignment(self, shift, user=None, role_code="GL", status=WorkerStatus.assigned):
        assignment = AssignedPersonnel(
            shift_id=shift.id,
            user_id=user.id if user else None,
            role_code=role_code,
            status=status.value,
        )
        self.db.add(assignment)
        self.db.commit()
        return assignment

    def time_entry(self, assignment, clock_in, clock_out=None, entry_number=1):
        entry = TimeEntry(
            assigned_personnel_id=assignment.id,
            shift_id=assignment.shift_id,
            user_id=assignment.user_id,
            entry_number=entry_number,
            clock_in=clock_in,
            clock_out=clock_out,
            is_active=clock_out is None,
        )
        self.db.add(entry)
        self.db.commit()
        return entry


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def admin(factory):
    return factory.user(UserRole.admin, name="Ada Admin")


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}
