import pytest

from kuja.bookings.booking_service import BookingService
from kuja.bookings.schemas import BookingStatus


@pytest.fixture
def completed_booking(db, gateway, user, customer, travel_date, package, admin_ctx):
    service = BookingService(db, gateway)
    booking = service.create_booking(
        package_id=package.id,
        user_id=user.id,
        customer_info=customer,
        travel_date=travel_date,
        number_of_travelers=2
    )
    service.update_status(booking.id, BookingStatus.CONFIRMED, admin_ctx)
    return service.update_status(booking.id, BookingStatus.COMPLETED, admin_ctx)


def review_body(booking_id, rating=5):
    return {"bookingId": booking_id, "rating": rating, "title": "Unforgettable", "comment": "Saw the big five!"}


def test_review_completed_trip_updates_ratings(client, db, completed_booking, package, destination, user_headers):
    response = client.post("/api/reviews", json=review_body(completed_booking.id, rating=4), headers=user_headers)

    assert response.status_code == 201
    assert response.json()["reviewerName"] == "Amani Otieno"

    listing = client.get(f"/api/reviews?packageId={package.id}").json()
    assert listing["totalReviews"] == 1
    assert listing["averageRating"] == 4.0

    db.refresh(destination)
    assert destination.total_reviews == 1


def test_one_review_per_booking(client, completed_booking, user_headers):
    client.post("/api/reviews", json=review_body(completed_booking.id), headers=user_headers)
    response = client.post("/api/reviews", json=review_body(completed_booking.id), headers=user_headers)
    assert response.status_code == 409


def test_only_completed_trips_can_be_reviewed(client, db, gateway, user, customer, travel_date, package, user_headers):
    booking = BookingService(db, gateway).create_booking(
        package_id=package.id,
        user_id=user.id,
        customer_info=customer,
        travel_date=travel_date,
        number_of_travelers=1
    )
    response = client.post("/api/reviews", json=review_body(booking.id), headers=user_headers)
    assert response.status_code == 400


def test_cannot_review_someone_elses_trip(client, completed_booking, other_headers):
    response = client.post("/api/reviews", json=review_body(completed_booking.id), headers=other_headers)
    assert response.status_code == 403


def test_rating_out_of_range(client, completed_booking, user_headers):
    response = client.post("/api/reviews", json=review_body(completed_booking.id, rating=6), headers=user_headers)
    assert response.status_code == 422


def test_mark_helpful_and_sort(client, completed_booking, package, user_headers, other_headers):
    review = client.post("/api/reviews", json=review_body(completed_booking.id), headers=user_headers).json()

    response = client.post(f"/api/reviews/{review['id']}/helpful", headers=other_headers)
    assert response.json()["helpful"] == 1

    listing = client.get(f"/api/reviews?packageId={package.id}&sort=helpful").json()
    assert listing["reviews"][0]["helpful"] == 1

    assert client.post("/api/reviews/9999/helpful", headers=other_headers).status_code == 404


def destination_review_body(destination_id, rating=5):
    return {"destinationId": destination_id, "rating": rating, "title": "Magical", "comment": "  Lions at dawn  "}


def test_review_a_destination(client, db, destination, user_headers):
    response = client.post("/api/user/destination-reviews", json=destination_review_body(destination.id, rating=4),
                           headers=user_headers)

    assert response.status_code == 201
    review = response.json()
    assert review["reviewerName"] == "Amani Otieno"
    assert review["comment"] == "Lions at dawn"

    listing = client.get(f"/api/user/destination-reviews?destinationId={destination.id}").json()
    assert listing["count"] == 1
    assert listing["averageRating"] == 4.0

    db.refresh(destination)
    assert destination.total_reviews == 1


def test_one_destination_review_per_user(client, destination, user_headers, other_headers):
    path = "/api/user/destination-reviews"
    client.post(path, json=destination_review_body(destination.id), headers=user_headers)

    again = client.post(path, json=destination_review_body(destination.id), headers=user_headers)
    assert again.status_code == 409
    assert again.json()["error"] == "You have already reviewed this destination"

    assert client.post(path, json=destination_review_body(destination.id), headers=other_headers).status_code == 201


def test_destination_rating_includes_package_reviews(client, db, completed_booking, destination, user_headers, other_headers):
    client.post("/api/reviews", json=review_body(completed_booking.id, rating=5), headers=user_headers)
    client.post("/api/user/destination-reviews", json=destination_review_body(destination.id, rating=2),
                headers=other_headers)

    db.refresh(destination)
    assert destination.total_reviews == 2
    assert float(destination.average_rating) == 3.5


def test_destination_review_needs_an_active_destination(client, db, destination, user_headers):
    assert client.post("/api/user/destination-reviews", json=destination_review_body(9999),
                       headers=user_headers).status_code == 404

    destination.active = False
    db.commit()
    assert client.post("/api/user/destination-reviews", json=destination_review_body(destination.id),
                       headers=user_headers).status_code == 404


def test_destination_review_requires_login(client, destination):
    response = client.post("/api/user/destination-reviews", json=destination_review_body(destination.id))
    assert response.status_code == 401
