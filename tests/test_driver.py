from portal.src.db import Booking, Vehicle
from portal.src.enums import BookingStatus, RouteStatus

URL_DRIVER_BOOKINGS = "/api/driver/bookings"
URL_DRIVER_PROFILE = "/api/driver/profile"
URL_DRIVER_PROFILE_UPDATE = "/api/driver/profile/update"
URL_DRIVER_ROUTES = "/api/driver/routes"


def addBooking(session, student, schedule, stop, status=BookingStatus.CONFIRMED):
    booking = Booking(
        student_id=student.id,
        route_id=schedule.route_id,
        schedule_id=schedule.id,
        trip_date=schedule.schedule_date,
        boarding_stop=stop,
        seat_number="1",
        status=status,
        amount=50,
    )
    session.add(booking)
    session.commit()
    return booking


# ---------------------------------------------------------------------------
# Bookings by route
# ---------------------------------------------------------------------------
def test_bookings_unknown_route_number(client):
    response = client.get(URL_DRIVER_BOOKINGS, params={"routeNumber": "RT001"})

    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Route not found"}


def test_bookings_require_a_route(client):
    response = client.get(URL_DRIVER_BOOKINGS)

    assert response.status_code == 400
    assert response.json()["error"] == "routeId or routeNumber is required"


def test_bookings_grouped_by_stop(client, seed, session):
    route = seed.route()
    schedule = seed.schedule(route)
    first = seed.student()
    second = seed.student(email="bala@student.edu", roll_number="CS2024002")
    third = seed.student(email="chitra@student.edu", roll_number="CS2024003")
    addBooking(session, first, schedule, "Erode")
    addBooking(session, second, schedule, None)
    addBooking(session, third, schedule, "Erode", status=BookingStatus.CANCELLED)

    response = client.get(
        URL_DRIVER_BOOKINGS,
        params={"routeNumber": "RT001", "date": schedule.schedule_date.isoformat()},
    )

    assert response.status_code == 200
    body = response.json()
    assert len(body["bookings"]) == 2
    assert [b["student_id"] for b in body["stopWise"]["Erode"]] == [first.id]
    assert [b["student_id"] for b in body["stopWise"]["Unknown Stop"]] == [second.id]


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------
def test_profile_reports_missing_statistics_as_zero(client, seed):
    driver = seed.driver()

    response = client.get(URL_DRIVER_PROFILE, params={"driverId": driver.id})

    assert response.status_code == 200
    profile = response.json()["profile"]
    assert profile["rating"] == 0
    assert profile["total_trips"] == 0
    assert profile["experience_years"] == 0


def test_profile_requires_driver_id(client):
    response = client.get(URL_DRIVER_PROFILE)

    assert response.status_code == 400
    assert response.json()["error"] == "Driver ID is required"


def test_profile_update_trims_values(client, seed):
    driver = seed.driver()

    response = client.post(
        URL_DRIVER_PROFILE_UPDATE,
        json={
            "driverId": driver.id,
            "name": "  Ravi Shankar ",
            "phone": " 9000000000",
            "license_number": "TN33 2024 0002 ",
        },
    )

    assert response.status_code == 200
    profile = response.json()["profile"]
    assert profile["name"] == "Ravi Shankar"
    assert profile["phone"] == "9000000000"
    assert profile["license_number"] == "TN33 2024 0002"


def test_profile_update_rejects_blank_values(client, seed):
    driver = seed.driver()

    response = client.post(
        URL_DRIVER_PROFILE_UPDATE,
        json={"driverId": driver.id, "name": "  ", "phone": "1", "license_number": "2"},
    )

    assert response.status_code == 400


# ---------------------------------------------------------------------------
# Assigned routes
# ---------------------------------------------------------------------------
def test_routes_lists_active_assigned_routes_with_stops(client, seed, session):
    driver = seed.driver()
    vehicle = Vehicle(registration_number="TN33AB1234", model="Tata", capacity=40)
    session.add(vehicle)
    session.commit()
    route = seed.route(driver_id=driver.id, vehicle_id=vehicle.id)
    seed.route(
        route_number="RT002", driver_id=driver.id, status=RouteStatus.INACTIVE
    )
    seed.stop(route, 2)
    seed.stop(route, 1)

    response = client.get(URL_DRIVER_ROUTES, params={"driverId": driver.id})

    assert response.status_code == 200
    routes = response.json()["routes"]
    assert [r["route_number"] for r in routes] == ["RT001"]
    assert routes[0]["vehicle"]["registration_number"] == "TN33AB1234"
    assert [s["sequence_order"] for s in routes[0]["route_stops"]] == [1, 2]


def test_route_detail_unknown_route(client):
    response = client.get(f"{URL_DRIVER_ROUTES}/999")

    assert response.status_code == 404
    assert response.json()["error"] == "Route not found"
