from portal.src.db import Route, Vehicle

URL_ADMIN_VEHICLE = "/api/admin/vehicle"
URL_ROUTES_LIVE_TRACKING = "/api/routes/live-tracking"

NEW_VEHICLE = {"registration_number": "TN33AB1234", "model": "Tata Starbus"}


def test_admin_vehicle_requires_admin_key(client):
    response = client.post(URL_ADMIN_VEHICLE, json=NEW_VEHICLE)

    assert response.status_code == 401
    assert response.headers["X-Error"] == "InvalidAdminKey"


def test_admin_vehicle_lifecycle(client, adminHeader, session):
    response = client.post(URL_ADMIN_VEHICLE, json=NEW_VEHICLE, headers=adminHeader)

    assert response.status_code == 201
    created = response.json()
    assert created["capacity"] == 40

    response = client.patch(
        URL_ADMIN_VEHICLE,
        json={"id": created["id"], "capacity": 52},
        headers=adminHeader,
    )
    assert response.status_code == 200
    assert response.json()["capacity"] == 52
    assert response.json()["model"] == "Tata Starbus"

    response = client.get(
        URL_ADMIN_VEHICLE, params={"capacity_ge": 50}, headers=adminHeader
    )
    assert [v["id"] for v in response.json()] == [created["id"]]

    response = client.delete(
        URL_ADMIN_VEHICLE, params={"id": created["id"]}, headers=adminHeader
    )
    assert response.status_code == 204
    assert session.query(Vehicle).count() == 0


def test_admin_vehicle_duplicate_registration(client, adminHeader, seed):
    seed.vehicle()

    response = client.post(URL_ADMIN_VEHICLE, json=NEW_VEHICLE, headers=adminHeader)

    assert response.status_code == 409
    assert response.json()["error"] == "Registration number already exists"


def test_admin_vehicle_malformed_registration(client, adminHeader):
    response = client.post(
        URL_ADMIN_VEHICLE,
        json={**NEW_VEHICLE, "registration_number": "tn-33 ab"},
        headers=adminHeader,
    )

    assert response.status_code == 400


def test_admin_vehicle_update_unknown(client, adminHeader):
    response = client.patch(
        URL_ADMIN_VEHICLE,
        json={"id": 999, "model": "Ashok Leyland"},
        headers=adminHeader,
    )

    assert response.status_code == 404
    assert response.json()["error"] == "Vehicle not found"


def test_deleting_vehicle_unassigns_route(client, adminHeader, seed, session):
    vehicle = seed.vehicle()
    route = seed.route(vehicle_id=vehicle.id)

    response = client.get(URL_ROUTES_LIVE_TRACKING, params={"routeId": route.id})
    assert response.json()["data"]["vehicle"]["model"] == "Tata Starbus"

    client.delete(URL_ADMIN_VEHICLE, params={"id": vehicle.id}, headers=adminHeader)

    session.expire_all()
    assert session.query(Route).one().vehicle_id is None
    response = client.get(URL_ROUTES_LIVE_TRACKING, params={"routeId": route.id})
    assert response.json()["data"]["vehicle"] is None
