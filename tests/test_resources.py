ROOM_PAYLOAD = {
    "name": "Standard Room",
    "description": "Twin beds, garden view",
    "facility_type": "guest_room",
    "sub_category": "Standard",
    "base_price": "1500.00",
    "capacity": 2,
    "total_units": 8,
    "amenities": ["wifi", "tv"],
}


def test_resource_create_requires_admin(resources_client, user_headers, admin_headers):
    forbidden = resources_client.post("/resources", json=ROOM_PAYLOAD, headers=user_headers)
    assert forbidden.status_code == 403
    assert forbidden.json()["detail"] == "Insufficient permissions"

    create_resp = resources_client.post("/resources", json=ROOM_PAYLOAD, headers=admin_headers)
    assert create_resp.status_code == 201
    body = create_resp.json()
    assert body["total_units"] == 8
    assert body["sub_category"] == "Standard"
    assert body["is_exclusive"] is False


def test_resource_create_rejects_broken_invariants(resources_client, admin_headers):
    payload = {**ROOM_PAYLOAD, "sub_category": None}
    resp = resources_client.post("/resources", json=payload, headers=admin_headers)
    assert resp.status_code == 422


def test_resource_listing_and_cache_invalidation(resources_client, admin_headers, user_headers, catalog):
    list_resp = resources_client.get("/resources", headers=user_headers)
    assert list_resp.status_code == 200
    assert len(list_resp.json()) == 3

    rooms_resp = resources_client.get("/resources?facility_type=guest_room", headers=user_headers)
    assert [r["name"] for r in rooms_resp.json()] == ["Deluxe Room"]

    deluxe_resp = resources_client.get("/resources?category=Deluxe", headers=user_headers)
    assert len(deluxe_resp.json()) == 1

    create_resp = resources_client.post("/resources", json=ROOM_PAYLOAD, headers=admin_headers)
    assert create_resp.status_code == 201

    refreshed = resources_client.get("/resources", headers=user_headers)
    assert len(refreshed.json()) == 4


def test_resource_listing_requires_token(resources_client):
    resp = resources_client.get("/resources")
    assert resp.status_code == 401


def test_guest_rooms_grouped_by_tier(resources_client, admin_headers, user_headers, catalog):
    resources_client.post("/resources", json=ROOM_PAYLOAD, headers=admin_headers)

    resp = resources_client.get("/resources/guest-rooms", headers=user_headers)
    assert resp.status_code == 200
    grouped = resp.json()
    assert set(grouped) == {"Deluxe", "Standard"}
    assert grouped["Deluxe"][0]["id"] == catalog.deluxe_id


def test_get_resource(resources_client, user_headers, catalog):
    resp = resources_client.get(f"/resources/{catalog.hall_id}", headers=user_headers)
    assert resp.status_code == 200
    assert resp.json()["is_exclusive"] is True

    missing = resources_client.get("/resources/9999", headers=user_headers)
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Resource not found"


def test_check_availability(resources_client, user_headers, catalog, day):
    resp = resources_client.post(
        "/resources/check-availability",
        json={
            "check_in_date": day(5),
            "check_out_date": day(7),
            "resources": [
                {"resource_id": catalog.deluxe_id, "quantity": 3},
                {"resource_id": catalog.hall_id},
            ],
        },
        headers=user_headers,
    )
    assert resp.status_code == 200
    report = resp.json()
    assert report["is_available"] is True
    assert report["number_of_days"] == 2
    assert report["insufficient"] == []
    deluxe = next(entry for entry in report["resources"] if entry["resource_id"] == catalog.deluxe_id)
    assert deluxe["available_units"] == 5


def test_check_availability_reports_shortage(resources_client, user_headers, catalog, day):
    resp = resources_client.post(
        "/resources/check-availability",
        json={
            "check_in_date": day(5),
            "check_out_date": day(6),
            "resources": [{"resource_id": catalog.deluxe_id, "quantity": 6}],
        },
        headers=user_headers,
    )
    assert resp.status_code == 200
    report = resp.json()
    assert report["is_available"] is False
    assert report["insufficient"][0]["requested"] == 6


def test_check_availability_enforces_resource_rules(resources_client, user_headers, catalog, day):
    resp = resources_client.post(
        "/resources/check-availability",
        json={
            "check_in_date": day(1),
            "check_out_date": day(9),
            "resources": [{"resource_id": catalog.deluxe_id}],
        },
        headers=user_headers,
    )
    assert resp.status_code == 400
    assert "maximum 7 day(s)" in resp.json()["detail"]

    bad_date = resources_client.post(
        "/resources/check-availability",
        json={"check_in_date": "2030/01/01", "check_out_date": day(2), "resources": [{"resource_id": 1}]},
        headers=user_headers,
    )
    assert bad_date.status_code == 422


def test_unknown_route_and_health(resources_client):
    assert resources_client.get("/health").json() == {"status": "ok", "service": "resources"}

    resp = resources_client.get("/nowhere")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Route not found"
    assert resp.headers["X-Request-ID"]
