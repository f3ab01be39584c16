from datetime import date, timedelta


def package_body(destination, **overrides):
    body = {
        "name": "Diani Beach Escape",
        "description": "Four days on the south coast",
        "destinationId": destination.id,
        "durationDays": 4,
        "price": "18500",
        "totalSeats": 12,
        "status": "upcoming",
        "startDate": (date.today() + timedelta(days=60)).isoformat(),
        "endDate": (date.today() + timedelta(days=64)).isoformat(),
        "difficulty": "Easy",
        "inclusions": ["Transport", "Accommodation"],
    }
    body.update(overrides)
    return body


def test_public_package_listing_carries_booking_action(client, make_package):
    make_package(name="Mara Weekend Safari")
    make_package(name="Amboseli Day Trip", status="soldout", available_seats=0, booked_seats=10)
    make_package(name="Old Lamu Tour", status="inactive")

    packages = client.get("/api/packages").json()["packages"]

    by_name = {p["name"]: p for p in packages}
    assert "Old Lamu Tour" not in by_name
    assert by_name["Mara Weekend Safari"]["bookingAction"]["label"] == "Book Now"
    assert by_name["Amboseli Day Trip"]["bookingAction"] == {
        "label": "Sold Out", "enabled": False, "reason": "This package is fully booked"
    }
    assert by_name["Mara Weekend Safari"]["destinationName"] == "Maasai Mara"


def test_search_matches_destination_name(client, make_package):
    make_package(name="Weekend Safari")
    assert len(client.get("/api/packages?search=mara").json()["packages"]) == 1
    assert client.get("/api/packages?search=zanzibar").json()["packages"] == []


def test_package_detail(client, package):
    response = client.get(f"/api/packages/{package.id}")
    assert response.status_code == 200
    assert response.json()["package"]["availableSeats"] == 10
    assert client.get("/api/packages/9999").status_code == 404


def test_admin_creates_package(client, destination, admin_headers, user_headers):
    assert client.post("/api/packages", json=package_body(destination), headers=user_headers).status_code == 403

    response = client.post("/api/packages", json=package_body(destination), headers=admin_headers)

    assert response.status_code == 201
    package = response.json()["package"]
    assert package["availableSeats"] == 12
    assert package["bookedSeats"] == 0
    assert package["bookingAction"]["label"] == "Pre-Book Now"


def test_end_date_before_start_is_rejected(client, destination, admin_headers):
    body = package_body(destination, endDate=date.today().isoformat())
    assert client.post("/api/packages", json=body, headers=admin_headers).status_code == 422


def test_resizing_keeps_booked_seats(client, admin_headers, make_package):
    package = make_package(total_seats=10, available_seats=4, booked_seats=6)

    response = client.put(f"/api/packages/{package.id}", json={"totalSeats": 8}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["package"]["availableSeats"] == 2

    response = client.put(f"/api/packages/{package.id}", json={"totalSeats": 5}, headers=admin_headers)
    assert response.status_code == 400


def test_resizing_to_booked_seats_sells_out(client, admin_headers, make_package):
    package = make_package(total_seats=10, available_seats=4, booked_seats=6)

    response = client.put(f"/api/packages/{package.id}", json={"totalSeats": 6}, headers=admin_headers)

    assert response.status_code == 200
    body = response.json()["package"]
    assert body["availableSeats"] == 0
    assert body["status"] == "soldout"
    assert body["bookingAction"]["label"] == "Sold Out"


def test_package_without_seats_cannot_be_set_active(client, admin_headers, make_package):
    package = make_package(total_seats=6, available_seats=0, booked_seats=6, status="soldout")

    response = client.put(f"/api/packages/{package.id}", json={"status": "active"}, headers=admin_headers)

    assert response.json()["package"]["status"] == "soldout"


def test_package_with_bookings_cannot_be_deleted(client, package, user_headers, admin_headers):
    client.post("/api/bookings", json={
        "packageId": package.id,
        "customerInfo": {"name": "Amani Otieno", "email": "amani.otieno@gmail.com", "phone": "0712345678"},
        "travelDate": (date.today() + timedelta(days=30)).isoformat(),
        "numberOfTravelers": 1
    }, headers=user_headers)

    response = client.delete(f"/api/packages/{package.id}", headers=admin_headers)
    assert response.status_code == 409


def test_delete_unbooked_package(client, package, admin_headers):
    assert client.delete(f"/api/packages/{package.id}", headers=admin_headers).json() == {"success": True}
    assert client.get(f"/api/packages/{package.id}").status_code == 404


def test_destinations(client, destination, admin_headers):
    body = client.get("/api/destinations").json()
    assert body["destinations"][0]["slug"] == "maasai-mara"
    assert body["pagination"]["total"] == 1

    response = client.post("/api/admin/destinations", json={
        "name": "Diani Beach", "description": "White sand beaches", "region": "Coast"
    }, headers=admin_headers)
    assert response.status_code == 201
    assert response.json()["slug"] == "diani-beach"

    duplicate = client.post("/api/admin/destinations", json={
        "name": "Diani Beach", "description": "Again"
    }, headers=admin_headers)
    assert duplicate.status_code == 409

    coast = client.get("/api/destinations?region=coast").json()["destinations"]
    assert [d["name"] for d in coast] == ["Diani Beach"]


def test_destination_with_packages_cannot_be_deleted(client, destination, package, admin_headers):
    response = client.delete(f"/api/admin/destinations/{destination.id}", headers=admin_headers)
    assert response.status_code == 409
