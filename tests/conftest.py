from datetime import date, datetime, time, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.pool import StaticPool

from portal.main import createApp
from portal.src import argon2
from portal.src.config import Config
from portal.src.constants import TMZ_SECONDARY
from portal.src.db import (
    Driver,
    Notification,
    ORMbase,
    Route,
    RouteStop,
    Schedule,
    SemesterFee,
    SemesterPayment,
    Store,
    Student,
    Vehicle,
)
from portal.src.enums import (
    DriverStatus,
    PaymentMethod,
    PaymentStatus,
    RouteStatus,
    ScheduleStatus,
)
from portal.src.functions import academicPeriod, semesterWindow

ADMIN_KEY = "test-admin-key"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def enableForeignKeys(dbapiConnection, connectionRecord):
        cursor = dbapiConnection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    ORMbase.metadata.create_all(engine)
    yield engine
    ORMbase.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def adminKey():
    return ADMIN_KEY


@pytest.fixture
def config(adminKey):
    return Config(admin_setup_key=adminKey)


@pytest.fixture
def client(config, engine):
    with TestClient(createApp(config, engine)) as client:
        yield client


@pytest.fixture
def adminHeader(adminKey):
    return {"Authorization": f"Bearer {adminKey}"}


@pytest.fixture
def session(engine):
    session = Store(engine).sessionMaker()
    yield session
    session.close()


class Seed:
    """Inserts rows directly into the store for the tests to act on."""

    def __init__(self, session):
        self.session = session

    def _save(self, row):
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return row

    def student(self, **kwargs):
        values = {
            "student_name": "Asha Kumar",
            "roll_number": "CS2024001",
            "email": "asha@student.edu",
            "mobile": "9876500001",
            "date_of_birth": date(2005, 5, 17),
        }
        values.update(kwargs)
        return self._save(Student(**values))

    def driver(self, password="secret123", **kwargs):
        values = {
            "name": "Ravi",
            "email": "a@x.com",
            "phone": "9876500002",
            "license_number": "TN3320240001",
            "password_hash": argon2.makePassword(password) if password else None,
            "status": DriverStatus.ACTIVE,
        }
        values.update(kwargs)
        return self._save(Driver(**values))

    def route(self, **kwargs):
        values = {
            "route_number": "RT001",
            "route_name": "Erode -> JKKN College",
            "start_location": "Erode",
            "end_location": "JKKN College",
            "departure_time": time(7, 0),
            "arrival_time": time(8, 30),
            "fare": 50,
            "total_capacity": 40,
            "status": RouteStatus.ACTIVE,
        }
        values.update(kwargs)
        return self._save(Route(**values))

    def stop(self, route, sequence, **kwargs):
        values = {
            "route_id": route.id,
            "stop_name": f"Stop {sequence}",
            "stop_time": time(7, sequence),
            "sequence_order": sequence,
        }
        values.update(kwargs)
        return self._save(RouteStop(**values))

    def schedule(self, route, daysAhead=10, **kwargs):
        values = {
            "route_id": route.id,
            "schedule_date": datetime.now(TMZ_SECONDARY).date()
            + timedelta(days=daysAhead),
            "departure_time": route.departure_time,
            "arrival_time": route.arrival_time,
            "total_seats": 40,
            "booked_seats": 0,
            "status": ScheduleStatus.SCHEDULED,
            "booking_enabled": True,
            "admin_scheduling_enabled": True,
        }
        values.update(kwargs)
        return self._save(Schedule(**values))

    def notification(self, **kwargs):
        values = {"title": "Bus delayed", "message": "RT001 runs 10 minutes late"}
        values.update(kwargs)
        return self._save(Notification(**values))

    def semesterFee(self, route, amount=10000, **kwargs):
        academicYear, semester = academicPeriod(datetime.now(TMZ_SECONDARY).date())
        validFrom, validUntil = semesterWindow(academicYear, semester)
        values = {
            "route_id": route.id,
            "academic_year": academicYear,
            "semester": semester,
            "semester_fee": amount,
            "valid_from": validFrom,
            "valid_until": validUntil,
        }
        values.update(kwargs)
        return self._save(SemesterFee(**values))

    def vehicle(self, **kwargs):
        values = {"registration_number": "TN33AB1234", "model": "Tata Starbus"}
        values.update(kwargs)
        return self._save(Vehicle(**values))

    def semesterPayment(self, student, fee, stopName="Erode", **kwargs):
        values = {
            "student_id": student.id,
            "route_id": fee.route_id,
            "semester_fee_id": fee.id,
            "stop_name": stopName,
            "academic_year": fee.academic_year,
            "semester": fee.semester,
            "amount_paid": fee.semester_fee,
            "payment_method": PaymentMethod.RAZORPAY,
            "payment_status": PaymentStatus.CONFIRMED,
            "valid_from": fee.valid_from,
            "valid_until": fee.valid_until,
            "paid_on": datetime.now(TMZ_SECONDARY),
        }
        values.update(kwargs)
        return self._save(SemesterPayment(**values))


@pytest.fixture
def seed(session):
    return Seed(session)
