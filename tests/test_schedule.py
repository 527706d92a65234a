from datetime import datetime, timedelta

from portal.src import exceptions
from portal.src.constants import TMZ_SECONDARY
from portal.src.db import Booking, Schedule
from portal.src.enums import RouteStatus, ScheduleStatus

URL_SCHEDULE_AVAILABILITY = "/api/schedules/availability"
URL_BOOKING = "/api/bookings"
URL_ADMIN_SCHEDULE = "/api/admin/schedule"


def bookingPayload(student, schedule):
    return {
        "studentId": student.id,
        "scheduleId": schedule.id,
        "boardingStop": "Erode",
    }


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------
def test_availability_requires_route(client):
    response = client.get(URL_SCHEDULE_AVAILABILITY)

    assert response.status_code == 400
    assert response.json()["error"] == "Route ID is required"


def test_availability_reports_seats_and_reasons(client, seed):
    route = seed.route()
    openSchedule = seed.schedule(route, daysAhead=5, booked_seats=38)
    fullSchedule = seed.schedule(route, daysAhead=6, booked_seats=40)
    pending = seed.schedule(route, daysAhead=7, admin_scheduling_enabled=False)
    cancelled = seed.schedule(route, daysAhead=8, status=ScheduleStatus.CANCELLED)

    response = client.get(URL_SCHEDULE_AVAILABILITY, params={"routeId": route.id})

    assert response.status_code == 200
    schedules = {s["id"]: s for s in response.json()}
    assert schedules[openSchedule.id]["available_seats"] == 2
    assert schedules[openSchedule.id]["is_booking_available"] is True
    assert schedules[openSchedule.id]["booking_disabled_reason"] is None
    assert schedules[fullSchedule.id]["available_seats"] == 0
    assert (
        schedules[fullSchedule.id]["booking_disabled_reason"]
        == exceptions.NoAvailableSeats.detail
    )
    assert (
        schedules[pending.id]["booking_disabled_reason"]
        == "Trip is not yet approved for booking"
    )
    assert (
        schedules[cancelled.id]["booking_disabled_reason"] == "Trip has been cancelled"
    )


def test_availability_is_empty_for_inactive_route(client, seed):
    route = seed.route(status=RouteStatus.INACTIVE)
    seed.schedule(route)

    response = client.get(URL_SCHEDULE_AVAILABILITY, params={"routeId": route.id})

    assert response.status_code == 200
    assert response.json() == []


def test_availability_rejects_inverted_range(client, seed):
    route = seed.route()

    response = client.get(
        URL_SCHEDULE_AVAILABILITY,
        params={
            "routeId": route.id,
            "startDate": "2026-05-10",
            "endDate": "2026-05-01",
        },
    )

    assert response.status_code == 400
    assert response.json()["error"] == "startDate must not be after endDate"


def test_availability_includes_student_booking(client, seed):
    route = seed.route()
    schedule = seed.schedule(route)
    student = seed.student()
    client.post(URL_BOOKING, json=bookingPayload(student, schedule))

    response = client.get(
        URL_SCHEDULE_AVAILABILITY,
        params={"routeId": route.id, "studentId": student.id},
    )

    userBooking = response.json()[0]["user_booking"]
    assert userBooking["boarding_stop"] == "Erode"
    assert userBooking["seat_number"] == "1"


# ---------------------------------------------------------------------------
# Booking
# ---------------------------------------------------------------------------
def test_booking_claims_a_seat(client, seed, session):
    route = seed.route()
    schedule = seed.schedule(route)
    student = seed.student()

    response = client.post(URL_BOOKING, json=bookingPayload(student, schedule))

    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Booking confirmed"
    assert body["booking"]["seat_number"] == "1"
    assert body["booking"]["amount"] == 50
    assert body["availableSeats"] == 39
    session.expire_all()
    stored = session.query(Schedule).filter(Schedule.id == schedule.id).one()
    assert stored.booked_seats == 1


def test_booking_last_seat_only_once(client, seed, session):
    route = seed.route()
    schedule = seed.schedule(route, total_seats=1)
    first = seed.student()
    second = seed.student(email="bala@student.edu", roll_number="CS2024002")

    response = client.post(URL_BOOKING, json=bookingPayload(first, schedule))
    assert response.status_code == 201
    assert response.json()["availableSeats"] == 0

    response = client.post(URL_BOOKING, json=bookingPayload(second, schedule))
    assert response.status_code == 409
    assert response.json()["error"] == exceptions.NoAvailableSeats.detail

    session.expire_all()
    stored = session.query(Schedule).filter(Schedule.id == schedule.id).one()
    assert stored.booked_seats == stored.total_seats == 1
    assert session.query(Booking).count() == 1


def test_booking_twice_by_same_student(client, seed):
    route = seed.route()
    schedule = seed.schedule(route)
    student = seed.student()
    client.post(URL_BOOKING, json=bookingPayload(student, schedule))

    response = client.post(URL_BOOKING, json=bookingPayload(student, schedule))

    assert response.status_code == 409
    assert response.json()["error"] == exceptions.AlreadyBooked.detail


def test_booking_after_window_closed(client, seed):
    route = seed.route()
    schedule = seed.schedule(route, daysAhead=0)
    student = seed.student()

    response = client.post(URL_BOOKING, json=bookingPayload(student, schedule))

    assert response.status_code == 400
    assert response.json()["error"] == "Booking window has closed"


def test_booking_past_trip(client, seed):
    route = seed.route()
    schedule = seed.schedule(route, daysAhead=-1)
    student = seed.student()

    response = client.post(URL_BOOKING, json=bookingPayload(student, schedule))

    assert response.status_code == 400
    assert response.json()["error"] == "Trip date has passed"


def test_booking_unknown_schedule(client, seed):
    student = seed.student()

    response = client.post(
        URL_BOOKING,
        json={"studentId": student.id, "scheduleId": 999, "boardingStop": "Erode"},
    )

    assert response.status_code == 404
    assert response.json()["error"] == "Schedule not found"


# ---------------------------------------------------------------------------
# Admin schedule
# ---------------------------------------------------------------------------
def test_admin_schedule_defaults_to_route_values(client, seed, adminHeader):
    route = seed.route(total_capacity=32)
    scheduleDate = datetime.now(TMZ_SECONDARY).date() + timedelta(days=3)

    response = client.post(
        URL_ADMIN_SCHEDULE,
        json={"route_id": route.id, "schedule_date": scheduleDate.isoformat()},
        headers=adminHeader,
    )

    assert response.status_code == 201
    schedule = response.json()
    assert schedule["total_seats"] == 32
    assert schedule["booked_seats"] == 0
    assert schedule["departure_time"] == "07:00:00"

    response = client.post(
        URL_ADMIN_SCHEDULE,
        json={"route_id": route.id, "schedule_date": scheduleDate.isoformat()},
        headers=adminHeader,
    )

    assert response.status_code == 409


def test_admin_schedule_requires_admin_key(client, seed):
    route = seed.route()

    response = client.post(
        URL_ADMIN_SCHEDULE,
        json={"route_id": route.id, "schedule_date": "2026-05-01"},
    )

    assert response.status_code == 401
