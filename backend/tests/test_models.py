import os
import sys
from datetime import datetime, timezone
from uuid import UUID, uuid4

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from servicehub.models import (
    Favorites,
    Profile,
    RequestStatus,
    Review,
    Service,
    ServiceRequest,
    Subscription,
    UserRecord,
    UserRole,
    parse_timestamp,
    parse_uuid,
)


def test_parse_uuid_accepts_braces_and_rejects_garbage():
    value = uuid4()
    assert parse_uuid(str(value)) == value
    assert parse_uuid("{" + str(value) + "}") == value
    assert parse_uuid("  ") is None
    assert parse_uuid("not-a-uuid") is None
    assert parse_uuid("00000000-0000-0000-0000-000000000000") is None
    assert parse_uuid(None) is None


def test_parse_timestamp_handles_date_only_and_zulu():
    assert parse_timestamp("2026-03-01") == datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert parse_timestamp("2026-03-01T10:30:00Z") == datetime(2026, 3, 1, 10, 30, tzinfo=timezone.utc)
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp("") is None


def test_service_clamps_price_and_rating_on_construction_and_assignment():
    service = Service(title="Уборка", price=-5, rating=9)
    assert service.price == 0.0
    assert service.rating == 5.0

    service.price = -1
    service.rating = -3
    assert service.price == 0.0
    assert service.rating == 0.0


def test_service_blank_or_malformed_id_gets_fresh_identifier():
    assert isinstance(Service(id="").id, UUID)
    loaded = Service.from_json({"id": "broken", "title": "Fix"})
    assert isinstance(loaded.id, UUID)
    assert loaded.title == "Fix"


def test_service_media_has_no_duplicates():
    service = Service.from_json({"title": "Photo", "media": ["a.png", " a.png ", "", "b.png"]})
    assert service.media == ["a.png", "b.png"]

    service.add_media(" b.png ")
    service.add_media("c.png")
    service.add_media("   ")
    assert service.media == ["a.png", "b.png", "c.png"]
    assert service.has_media("c.png")

    service.remove_media("a.png")
    assert service.media == ["b.png", "c.png"]
    service.clear_media()
    assert service.media == []


def test_service_round_trip_uses_camel_case_keys():
    service = Service(provider_id=uuid4(), title="Ремонт окон", category="Ремонт", price=1500, rating=4.5)
    payload = service.to_json()
    assert payload["providerId"] == str(service.provider_id)
    assert "createdAt" in payload
    assert Service.from_json(payload) == service


def test_service_info_lines():
    service = Service(title="", price=10, rating=4)
    assert service.info() == "Untitled | 10.00 ₽ | 4.0★"
    assert "price: 10.00" in service.full_info()


def test_request_status_transitions_stamp_completed_once():
    request = ServiceRequest(service_id=uuid4(), client_id=uuid4(), provider_id=uuid4())
    assert request.status is RequestStatus.PENDING
    assert request.completed_at is None

    request.update_status(RequestStatus.COMPLETED)
    first = request.completed_at
    assert first is not None

    request.update_status(RequestStatus.COMPLETED)
    assert request.completed_at == first

    request.update_status(RequestStatus.IN_PROGRESS)
    assert request.completed_at == first
    request.update_status(RequestStatus.COMPLETED)
    assert request.completed_at == first


def test_request_status_index_is_clamped():
    request = ServiceRequest()
    request.set_status_from_index(99)
    assert request.status is RequestStatus.CANCELLED
    request.set_status_from_index(-4)
    assert request.status is RequestStatus.PENDING


def test_request_accepts_legacy_status_names():
    assert ServiceRequest.from_json({"status": " In Progress "}).status is RequestStatus.IN_PROGRESS
    assert ServiceRequest.from_json({"status": "canceled"}).status is RequestStatus.CANCELLED
    assert ServiceRequest.from_json({"status": "whatever"}).status is RequestStatus.PENDING
    assert ServiceRequest.from_json({"status": 7}).status is RequestStatus.CANCELLED


def test_request_load_defaults_and_completed_repair():
    loaded = ServiceRequest.from_json({"status": "Completed", "createdAt": "2025-05-01T12:00:00"})
    assert loaded.created_at == datetime(2025, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert loaded.completed_at == loaded.created_at

    fresh = ServiceRequest.from_json({"createdAt": "not a date"})
    assert fresh.created_at is not None


def test_request_round_trip_and_comments():
    request = ServiceRequest(description="  fix tap  ")
    request.set_description("  fix tap  ")
    assert request.description == "fix tap"
    assert request.add_comment("  call first ")
    assert not request.add_comment("   ")
    request.update_status(RequestStatus.COMPLETED)

    payload = request.to_json()
    assert payload["status"] == 3
    assert payload["comments"] == ["call first"]
    assert ServiceRequest.from_json(payload) == request
    assert request.info().endswith("| Completed")


def test_review_keeps_invalid_timestamp_unset():
    review = Review.from_json({"rating": 4, "comment": "ok", "createdAt": "garbage"})
    assert review.created_at is None
    assert Review.from_json({"rating": 2}).created_at is None

    original = Review(client_id=uuid4(), service_id=uuid4(), rating=7, comment="great")
    assert original.rating == 7
    assert Review.from_json(original.to_json()) == original


def test_subscription_validity_rules():
    user_id = uuid4()
    subscription = Subscription(user_id=user_id, plan_type="  Pro ", price=-20)
    assert subscription.plan_type == "Pro"
    assert subscription.price == 0.0
    assert subscription.is_valid()

    subscription.start_date = "2026-05-01"
    subscription.end_date = "2026-04-01"
    assert not subscription.is_valid()

    assert not Subscription(user_id=user_id, plan_type="   ").is_valid()
    assert not Subscription(plan_type="Pro").is_valid()


def test_subscription_cancel_closes_future_end_date():
    now = datetime(2026, 1, 10, tzinfo=timezone.utc)
    subscription = Subscription(user_id=uuid4(), plan_type="Pro", active=True, end_date="2026-12-31")
    subscription.cancel(now)
    assert subscription.active is False
    assert subscription.end_date == now
    assert subscription.is_expired(now)

    past = Subscription(user_id=uuid4(), plan_type="Pro", active=True, end_date="2025-12-31")
    past.cancel(now)
    assert past.end_date == datetime(2025, 12, 31, tzinfo=timezone.utc)


def test_subscription_json_shape():
    subscription = Subscription(user_id=uuid4(), plan_type="Basic", price=99, start_date="2026-01-01")
    payload = subscription.to_json()
    assert payload["subscriptionId"] == str(subscription.id)
    assert payload["endDate"] is None
    loaded = Subscription.from_json({**payload, "endDate": "not-a-date", "active": "true"})
    assert loaded.end_date is None
    assert loaded.active is True
    assert loaded.id == subscription.id


def test_favorites_toggle_and_history():
    favorites = Favorites(user_id=uuid4())
    service_id = uuid4()
    assert favorites.toggle_favorite_service(service_id) is True
    assert favorites.toggle_favorite_service(service_id) is False
    assert favorites.favorite_service_ids == []
    assert favorites.toggle_favorite_provider("nope") is False

    ids = [uuid4() for _ in range(5)]
    for item in ids:
        favorites.add_viewed_service(item, max_items=3)
    assert favorites.viewed_service_ids == [ids[4], ids[3], ids[2]]

    favorites.add_viewed_service(ids[2], max_items=3)
    assert favorites.viewed_service_ids == [ids[2], ids[4], ids[3]]

    favorites.add_viewed_service(ids[0], max_items=0)
    assert favorites.viewed_service_ids == [ids[0]]


def test_favorites_load_drops_bad_ids_and_defaults_timestamp():
    good = uuid4()
    loaded = Favorites.from_json(
        {
            "favoritesId": "",
            "favoriteServiceIds": [str(good), "junk", str(good)],
            "lastUpdated": "never",
        }
    )
    assert loaded.favorite_service_ids == [good]
    assert loaded.last_updated is not None
    assert "favoritesId" in loaded.to_json()


def test_profile_running_average_clamps_samples():
    profile = Profile(owner_user_id=uuid4())
    profile.add_rating(4)
    profile.add_rating(9)
    assert profile.review_count == 2
    assert profile.rating == 4.5

    payload = profile.to_json()
    assert payload["isVerified"] is False
    assert payload["profileId"] == str(profile.id)
    assert Profile.from_json(payload) == profile


def test_user_record_identifier_matching():
    user = UserRecord(email="Someone@Example.com", phone="+7000", role=UserRole.PROVIDER)
    assert user.matches_identifier("someone@example.com")
    assert user.matches_identifier("+7000")
    assert not user.matches_identifier("")
    assert UserRecord(email="x@y.z").matches_identifier("") is False
    assert UserRecord.from_json({"email": "x@y.z", "role": 9}).role is UserRole.CLIENT
    assert UserRole.from_index(7) is UserRole.ADMIN
    assert UserRole.PROVIDER.label == "Provider"
