from datetime import date

from fastapi.testclient import TestClient

from portal.main import createApp
from portal.src import argon2
from portal.src.constants import DEFAULT_SCHEDULING_SETTINGS
from portal.src.db import Driver, Route, SemesterFee, Student, Vehicle
from portal.src.enums import DriverStatus

URL_ADMIN_CREATE_DRIVER = "/api/admin/create-driver"
URL_DRIVER_LOGIN = "/api/auth/driver-login"
URL_SETTINGS = "/api/settings"
URL_SETUP_DEMO = "/api/setup-demo"
URL_ADMIN_STUDENT = "/api/admin/student"
URL_ADMIN_DRIVER = "/api/admin/driver"
URL_ADMIN_SEMESTER_FEE = "/api/admin/semester-fee"

NEW_DRIVER = {
    "name": "Kumar",
    "email": "Kumar@Transport.edu",
    "phone": "9000000001",
    "password": "drive123",
}

NEW_SETTINGS = {
    "enableBookingTimeWindow": True,
    "bookingWindowEndHour": 18,
    "bookingWindowDaysBefore": 2,
    "autoNotifyPassengers": False,
    "sendReminderHours": [12],
}


# ---------------------------------------------------------------------------
# Driver provisioning
# ---------------------------------------------------------------------------
def test_create_driver_then_login(client, adminKey, session):
    response = client.post(
        URL_ADMIN_CREATE_DRIVER, json={**NEW_DRIVER, "adminKey": adminKey}
    )

    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Driver account created successfully"
    assert body["driver"]["email"] == "kumar@transport.edu"
    assert body["driver"]["license_number"].startswith("LIC")
    assert body["driver"]["status"] == DriverStatus.ACTIVE
    stored = session.query(Driver).one()
    assert stored.rating == 5.0
    assert stored.total_trips == 0

    response = client.post(
        URL_DRIVER_LOGIN,
        json={"email": "kumar@transport.edu", "password": "drive123"},
    )
    assert response.status_code == 200


def test_create_driver_checks_admin_key_first(client):
    response = client.post(URL_ADMIN_CREATE_DRIVER, json={"adminKey": "wrong"})

    assert response.status_code == 401
    assert response.json()["error"] == "Unauthorized"

    response = client.post(URL_ADMIN_CREATE_DRIVER, json=NEW_DRIVER)

    assert response.status_code == 401


def test_create_driver_without_configured_key(config, engine, adminKey):
    unconfigured = config.model_copy(update={"admin_setup_key": None})
    with TestClient(createApp(unconfigured, engine)) as client:
        response = client.post(
            URL_ADMIN_CREATE_DRIVER, json={**NEW_DRIVER, "adminKey": adminKey}
        )

    assert response.status_code == 500
    assert response.json()["error"] == "Server configuration error"


def test_create_driver_validation(client, adminKey):
    response = client.post(
        URL_ADMIN_CREATE_DRIVER, json={"name": "Kumar", "adminKey": adminKey}
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Name, email and password are required"

    response = client.post(
        URL_ADMIN_CREATE_DRIVER,
        json={**NEW_DRIVER, "password": "abc", "adminKey": adminKey},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Password must be at least 6 characters long"


def test_create_driver_duplicate_email(client, seed, adminKey):
    seed.driver(email="kumar@transport.edu")

    response = client.post(
        URL_ADMIN_CREATE_DRIVER, json={**NEW_DRIVER, "adminKey": adminKey}
    )

    assert response.status_code == 409
    assert response.json()["error"] == "Driver with this email already exists"


def test_update_driver_password(client, seed, adminHeader, session):
    driver = seed.driver()

    response = client.patch(
        URL_ADMIN_DRIVER,
        json={"id": driver.id, "password": "changed99", "experience_years": 4},
        headers=adminHeader,
    )

    assert response.status_code == 200
    assert response.json()["experience_years"] == 4
    assert "password_hash" not in response.json()
    session.expire_all()
    stored = session.query(Driver).filter(Driver.id == driver.id).one()
    assert argon2.checkPassword("changed99", stored.password_hash)


def test_list_and_delete_drivers(client, seed, adminHeader, session):
    seed.driver()
    other = seed.driver(name="Selvam", email="selvam@x.com")

    response = client.get(
        URL_ADMIN_DRIVER, params={"name": "selv"}, headers=adminHeader
    )

    assert [d["id"] for d in response.json()] == [other.id]

    response = client.delete(
        URL_ADMIN_DRIVER, params={"id": other.id}, headers=adminHeader
    )

    assert response.status_code == 204
    assert session.query(Driver).count() == 1


# ---------------------------------------------------------------------------
# Scheduling settings
# ---------------------------------------------------------------------------
def test_settings_default(client):
    response = client.get(URL_SETTINGS)

    assert response.status_code == 200
    assert response.json() == {"settings": DEFAULT_SCHEDULING_SETTINGS}


def test_settings_update(client, adminHeader):
    response = client.put(URL_SETTINGS, json=NEW_SETTINGS, headers=adminHeader)

    assert response.status_code == 200
    assert response.json() == {"success": True, "settings": NEW_SETTINGS}
    assert client.get(URL_SETTINGS).json() == {"settings": NEW_SETTINGS}

    response = client.put(
        URL_SETTINGS,
        json={**NEW_SETTINGS, "bookingWindowDaysBefore": 0},
        headers=adminHeader,
    )

    assert response.status_code == 200
    assert client.get(URL_SETTINGS).json()["settings"]["bookingWindowDaysBefore"] == 0


def test_settings_update_rejects_invalid_hour(client, adminHeader):
    response = client.put(
        URL_SETTINGS,
        json={**NEW_SETTINGS, "bookingWindowEndHour": 24},
        headers=adminHeader,
    )

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_settings_update_requires_admin_key(client):
    response = client.put(URL_SETTINGS, json=NEW_SETTINGS)

    assert response.status_code == 401


# ---------------------------------------------------------------------------
# Demo data
# ---------------------------------------------------------------------------
def test_setup_demo_is_idempotent(client, adminHeader, session):
    first = client.post(URL_SETUP_DEMO, headers=adminHeader)
    second = client.post(URL_SETUP_DEMO, headers=adminHeader)

    assert first.status_code == 200
    assert first.json()["message"] == "Demo data created successfully"
    assert first.json()["data"] == second.json()["data"]
    data = first.json()["data"]
    assert data["route"]["number"] == "RT001"
    assert data["vehicle"]["registrationNumber"] == "TN33DM0001"
    assert data["semesterFee"]["amount"] == 10000
    assert session.query(Student).count() == 1
    assert session.query(Route).count() == 1
    assert session.query(SemesterFee).count() == 1
    route = session.query(Route).one()
    assert route.vehicle_id == session.query(Vehicle).one().id


# ---------------------------------------------------------------------------
# Students
# ---------------------------------------------------------------------------
def test_student_lifecycle(client, adminHeader, session):
    response = client.post(
        URL_ADMIN_STUDENT,
        json={
            "student_name": "Bala",
            "roll_number": "CS2024002",
            "email": "Bala@Student.edu",
            "date_of_birth": "2005-02-01",
        },
        headers=adminHeader,
    )

    assert response.status_code == 201
    student = response.json()
    assert student["email"] == "bala@student.edu"
    assert student["first_login_completed"] is False
    assert "password_hash" not in student

    response = client.patch(
        URL_ADMIN_STUDENT,
        json={"id": student["id"], "mobile": "9000000002"},
        headers=adminHeader,
    )

    assert response.status_code == 200
    assert response.json()["mobile"] == "9000000002"

    response = client.get(
        URL_ADMIN_STUDENT, params={"roll_number": "2024002"}, headers=adminHeader
    )

    assert [s["id"] for s in response.json()] == [student["id"]]

    response = client.delete(
        URL_ADMIN_STUDENT, params={"id": student["id"]}, headers=adminHeader
    )

    assert response.status_code == 204
    assert session.query(Student).count() == 0


def test_student_duplicates(client, seed, adminHeader):
    seed.student()

    response = client.post(
        URL_ADMIN_STUDENT,
        json={"student_name": "Asha", "email": "ASHA@student.edu"},
        headers=adminHeader,
    )

    assert response.status_code == 409
    assert response.json()["error"] == "Student with this email already exists"

    response = client.post(
        URL_ADMIN_STUDENT,
        json={
            "student_name": "Asha",
            "email": "asha.k@student.edu",
            "roll_number": "CS2024001",
        },
        headers=adminHeader,
    )

    assert response.status_code == 409
    assert response.json()["error"] == "Roll number already exists"


# ---------------------------------------------------------------------------
# Semester fees
# ---------------------------------------------------------------------------
def test_semester_fee_defaults_to_semester_window(client, seed, adminHeader):
    route = seed.route()

    response = client.post(
        URL_ADMIN_SEMESTER_FEE,
        json={
            "route_id": route.id,
            "academic_year": "2025-26",
            "semester": 2,
            "semester_fee": 12000,
        },
        headers=adminHeader,
    )

    assert response.status_code == 201
    fee = response.json()
    assert fee["valid_from"] == date(2025, 12, 1).isoformat()
    assert fee["valid_until"] == date(2026, 5, 31).isoformat()

    response = client.post(
        URL_ADMIN_SEMESTER_FEE,
        json={
            "route_id": route.id,
            "academic_year": "2025-26",
            "semester": 2,
            "semester_fee": 9000,
        },
        headers=adminHeader,
    )

    assert response.status_code == 409
    assert (
        response.json()["error"]
        == "Semester fee already exists for this route and semester"
    )


def test_semester_fee_update_and_delete(client, seed, adminHeader, session):
    route = seed.route()
    fee = seed.semesterFee(route)

    response = client.patch(
        URL_ADMIN_SEMESTER_FEE,
        json={"id": fee.id, "semester_fee": 11500, "is_active": False},
        headers=adminHeader,
    )

    assert response.status_code == 200
    assert response.json()["semester_fee"] == 11500
    assert response.json()["is_active"] is False

    response = client.patch(
        URL_ADMIN_SEMESTER_FEE,
        json={"id": fee.id, "valid_from": "2030-01-01"},
        headers=adminHeader,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "valid_from must not be after valid_until"

    response = client.get(
        URL_ADMIN_SEMESTER_FEE, params={"route_id": route.id}, headers=adminHeader
    )

    assert [f["id"] for f in response.json()] == [fee.id]

    response = client.delete(
        URL_ADMIN_SEMESTER_FEE, params={"id": fee.id}, headers=adminHeader
    )

    assert response.status_code == 204
    assert session.query(SemesterFee).count() == 0


def test_semester_fee_unknown_route(client, adminHeader):
    response = client.post(
        URL_ADMIN_SEMESTER_FEE,
        json={
            "route_id": 999,
            "academic_year": "2025-26",
            "semester": 1,
            "semester_fee": 12000,
        },
        headers=adminHeader,
    )

    assert response.status_code == 404
    assert response.json()["error"] == "Route not found"
