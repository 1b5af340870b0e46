from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import coursedesk.models  # noqa: F401
from coursedesk.db.database import Base, get_db
from coursedesk.main import app
from coursedesk.models.enums import GroupStatus
from coursedesk.models.group import Group
from coursedesk.models.participant import Participant
from coursedesk.services.entitlement import EntitlementGate, get_entitlement_gate


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db(engine):
    session = sessionmaker(bind=engine, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def gate():
    return EntitlementGate(cache_path="")


@pytest.fixture()
def client(db, gate):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_entitlement_gate] = lambda: gate
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def make_group(db):
    def _make(
        course_start_date: date,
        status: GroupStatus = GroupStatus.planned,
        group_number: int | None = None,
        is_locked: bool = False,
    ) -> Group:
        group = Group(
            course_start_date=course_start_date,
            course_end_date=course_start_date + timedelta(days=7),
            status=status,
            group_number=group_number,
            is_locked=is_locked,
        )
        db.add(group)
        db.flush()
        return group

    return _make


@pytest.fixture()
def make_participant(db):
    counter = {"n": 0}

    def _make(
        course_start_date: date,
        unique_number: str | None = None,
        medical_date: date | None = None,
        person_name: str | None = None,
    ) -> Participant:
        counter["n"] += 1
        participant = Participant(
            company_name="Acme Logistics",
            person_name=person_name or f"Person {counter['n']}",
            national_id=f"85010{counter['n']:05d}",
            birth_place="Sofia",
            citizenship="българско",
            medical_date=medical_date or course_start_date - timedelta(days=2),
            course_start_date=course_start_date,
            course_end_date=course_start_date + timedelta(days=7),
            unique_number=unique_number,
            created_at=datetime(2025, 1, 1, 8, 0) + timedelta(minutes=counter["n"]),
        )
        db.add(participant)
        db.flush()
        return participant

    return _make
