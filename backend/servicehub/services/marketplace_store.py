import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Type, TypeVar, Union
from uuid import uuid4

from pydantic import ValidationError

from servicehub import auth
from servicehub.config import DEFAULT_HISTORY_LIMIT, Settings, get_settings
from servicehub.events import ChangeEvent, EventBus
from servicehub.models import (
    EntityModel,
    Favorites,
    Profile,
    Review,
    Service,
    ServiceRequest,
    Session,
    Subscription,
    UserRecord,
    UserRole,
    parse_timestamp,
    parse_uuid,
)
from servicehub.services.catalog import Catalog
from servicehub.services.json_files import JsonFileStore

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=EntityModel)

SERVICES = "services"
REQUESTS = "requests"
REVIEWS = "reviews"
SUBSCRIPTIONS = "subscriptions"
FAVORITES = "favorites"
PROFILES = "profiles"
USERS = "users"

COLLECTION_EVENTS = {
    SERVICES: ChangeEvent.SERVICES,
    REQUESTS: ChangeEvent.REQUESTS,
    REVIEWS: ChangeEvent.REVIEWS,
    SUBSCRIPTIONS: ChangeEvent.SUBSCRIPTIONS,
    FAVORITES: ChangeEvent.FAVORITES,
    PROFILES: ChangeEvent.PROFILES,
}

ACCOUNT_COLLECTIONS = {USERS, PROFILES}

ServiceInput = Union[Service, Mapping[str, Any]]


def _index_where(records: List[R], predicate: Callable[[R], bool]) -> int:
    for idx, record in enumerate(records):
        if predicate(record):
            return idx
    return -1


def _copies(records: List[R]) -> List[R]:
    return [record.model_copy(deep=True) for record in records]


@dataclass
class MarketplaceStore:
    """Owns every collection and the current session.

    Mutations validate first, then change memory, rewrite the affected
    collection file and emit the matching change event. Domain failures are
    reported as ``False`` / ``None`` / ``""`` / ``[]``, never raised.
    """

    data_dir: str
    view_history_limit: int = DEFAULT_HISTORY_LIMIT
    search_history_limit: int = DEFAULT_HISTORY_LIMIT
    persist_accounts: bool = False
    events: EventBus = field(default_factory=EventBus)

    def __post_init__(self) -> None:
        self._files = JsonFileStore(self.data_dir)
        self.data_dir = str(self._files.data_dir)
        self._session: Optional[Session] = None
        self._catalog = self._load_catalog()
        self._requests: List[ServiceRequest] = self._load_records(REQUESTS, ServiceRequest)
        self._reviews: List[Review] = self._load_records(REVIEWS, Review)
        self._subscriptions: List[Subscription] = self._load_records(SUBSCRIPTIONS, Subscription)
        self._favorites: List[Favorites] = self._load_records(FAVORITES, Favorites)
        self._users: List[UserRecord] = []
        self._profiles: List[Profile] = []
        if self.persist_accounts:
            self._users = self._load_records(USERS, UserRecord)
            self._profiles = self._load_records(PROFILES, Profile)
        logger.info(
            "Loaded store from %s: %d services, %d requests, %d reviews",
            self.data_dir,
            len(self._catalog),
            len(self._requests),
            len(self._reviews),
        )

    # ---- loading / saving ----

    def _load_catalog(self) -> Catalog:
        document = self._files.load_object(SERVICES)
        if not document:
            return Catalog(search_history_limit=self.search_history_limit)
        try:
            return Catalog.from_json(document, search_history_limit=self.search_history_limit)
        except ValidationError:
            logger.warning("Ignoring unreadable services document in %s", self.data_dir)
            return Catalog(search_history_limit=self.search_history_limit)

    def _load_records(self, name: str, model: Type[R]) -> List[R]:
        records: List[R] = []
        for row in self._files.load_array(name) or []:
            if not isinstance(row, dict):
                continue
            try:
                records.append(model.from_json(row))
            except ValidationError:
                logger.warning("Skipping invalid %s entry", name)
        return records

    def _document_for(self, name: str) -> Any:
        if name == SERVICES:
            return self._catalog.to_json()
        records: Dict[str, List[EntityModel]] = {
            REQUESTS: self._requests,
            REVIEWS: self._reviews,
            SUBSCRIPTIONS: self._subscriptions,
            FAVORITES: self._favorites,
            PROFILES: self._profiles,
            USERS: self._users,
        }
        return [record.to_json() for record in records[name]]

    def _commit(self, name: str) -> None:
        if name not in ACCOUNT_COLLECTIONS or self.persist_accounts:
            if not self._files.save(name, self._document_for(name)):
                logger.error("Changes to %s are kept in memory only", name)
        event = COLLECTION_EVENTS.get(name)
        if event is not None:
            self.events.emit(event)

    def _emit_session_change(self, logged_in_changed: bool) -> None:
        self.events.emit(ChangeEvent.CURRENT_USER)
        if logged_in_changed:
            self.events.emit(ChangeEvent.LOGGED_IN)

    # ---- session ----

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def logged_in(self) -> bool:
        return self._session is not None

    @property
    def current_user_id(self) -> str:
        return str(self._session.user_id) if self._session else ""

    @property
    def current_user_email(self) -> str:
        return self._session.email if self._session else ""

    @property
    def current_user_phone(self) -> str:
        return self._session.phone if self._session else ""

    @property
    def current_user_role(self) -> str:
        return self._session.role_name if self._session else UserRole.CLIENT.label

    @property
    def current_user_verified(self) -> bool:
        return bool(self._session and self._session.verified)

    def _current_user(self) -> Optional[UserRecord]:
        if self._session is None:
            return None
        user_id = self._session.user_id
        idx = _index_where(self._users, lambda user: user.id == user_id)
        return self._users[idx] if idx >= 0 else None

    def _start_session(self, user: UserRecord) -> None:
        self._session = Session.from_user(user)
        self._emit_session_change(logged_in_changed=True)

    def _refresh_session(self, user: UserRecord) -> None:
        self._session = Session.from_user(user)
        self._emit_session_change(logged_in_changed=False)

    def _find_user(self, identifier: str) -> Optional[UserRecord]:
        idx = _index_where(self._users, lambda user: user.matches_identifier(identifier))
        return self._users[idx] if idx >= 0 else None

    def register(self, email: str, phone: str, role_index: int, password: str) -> bool:
        email = email.strip()
        phone = phone.strip()
        if not email or not auth.password_is_acceptable(password):
            logger.debug("Registration rejected: missing email or short password")
            return False
        for user in self._users:
            if user.email.casefold() == email.casefold():
                logger.debug("Registration rejected: email already used")
                return False
            if phone and user.phone == phone:
                logger.debug("Registration rejected: phone already used")
                return False

        user = UserRecord(email=email, phone=phone, role=UserRole.from_index(role_index))
        auth.set_password(user, password)
        self._users.append(user)
        self._commit(USERS)
        logger.info("Registered user %s as %s", user.id, user.role.label)
        self._start_session(user)
        return True

    def login(self, identifier: str, password: str) -> bool:
        user = self._find_user(identifier)
        if user is None or not auth.check_password(user, password):
            logger.debug("Login rejected")
            return False
        self._start_session(user)
        logger.info("User %s logged in", user.id)
        return True

    def logout(self) -> None:
        if self._session is None:
            return
        logger.info("User %s logged out", self._session.user_id)
        self._session = None
        self._emit_session_change(logged_in_changed=True)

    def issue_verification_code(self) -> str:
        """Store and return a fresh 6-digit code (shown to the user directly)."""
        user = self._current_user()
        if user is None:
            return ""
        user.verification_code = auth.generate_verification_code()
        self._commit(USERS)
        logger.info("Issued verification code for user %s", user.id)
        return user.verification_code

    def verify_account(self, code: str) -> bool:
        user = self._current_user()
        if user is None or not auth.codes_match(user.verification_code, code.strip()):
            return False
        user.verified = True
        user.verification_code = ""
        self._commit(USERS)
        logger.info("User %s verified", user.id)
        self._refresh_session(user)
        return True

    def change_password(self, old_password: str, new_password: str) -> bool:
        user = self._current_user()
        if user is None or not auth.password_is_acceptable(new_password):
            return False
        if not auth.check_password(user, old_password):
            return False
        auth.set_password(user, new_password)
        self._commit(USERS)
        logger.info("User %s changed password", user.id)
        self._refresh_session(user)
        return True

    # ---- profile ----

    def _profile_index(self, owner_id: Any) -> int:
        return _index_where(self._profiles, lambda profile: profile.owner_user_id == owner_id)

    def get_my_profile(self) -> Optional[Profile]:
        if self._session is None:
            return None
        idx = self._profile_index(self._session.user_id)
        if idx < 0:
            return Profile(owner_user_id=self._session.user_id)
        return self._profiles[idx].model_copy(deep=True)

    def save_my_profile(
        self,
        name: str,
        description: str,
        avatar_path: str,
        contact_email: str,
        contact_phone: str,
    ) -> bool:
        if self._session is None:
            return False
        owner_id = self._session.user_id
        idx = self._profile_index(owner_id)
        if idx < 0:
            self._profiles.append(Profile(owner_user_id=owner_id))
            idx = len(self._profiles) - 1

        profile = self._profiles[idx]
        profile.name = name
        profile.description = description
        profile.avatar_path = avatar_path
        profile.contact_email = contact_email
        profile.contact_phone = contact_phone
        profile.verified = self._session.verified
        self._commit(PROFILES)
        return True

    # ---- services ----

    def _coerce_service(self, value: ServiceInput) -> Optional[Service]:
        if isinstance(value, Service):
            return value
        if not isinstance(value, Mapping):
            return None
        try:
            return Service.from_json(value)
        except (ValidationError, ValueError, TypeError):
            logger.debug("Rejected malformed service payload")
            return None

    def get_all_services(self) -> List[Service]:
        return self._catalog.all()

    def get_service(self, service_id: str) -> Optional[Service]:
        return self._catalog.get(service_id)

    def add_service(self, service: ServiceInput) -> bool:
        record = self._coerce_service(service)
        if record is None:
            return False
        self._catalog.add(record)
        self._commit(SERVICES)
        logger.info("Saved service %s", record.id)
        return True

    def update_service(self, service: ServiceInput) -> bool:
        record = self._coerce_service(service)
        if record is None or not self._catalog.update(record):
            return False
        self._commit(SERVICES)
        logger.info("Updated service %s", record.id)
        return True

    def delete_service(self, service_id: str) -> bool:
        if not self._catalog.remove(service_id):
            return False
        self._commit(SERVICES)
        logger.info("Deleted service %s", service_id)
        return True

    def get_active_services(self) -> List[Service]:
        return self._catalog.active()

    def search_by_name(self, text: str) -> List[Service]:
        if self._catalog.add_search_history(text):
            self._commit(SERVICES)
        return self._catalog.search_by_name(text)

    def search_by_description(self, text: str) -> List[Service]:
        if self._catalog.add_search_history(text):
            self._commit(SERVICES)
        return self._catalog.search_by_description(text)

    def filter_by_category(self, category: str) -> List[Service]:
        return self._catalog.filter_by_category(category)

    def filter_by_price(self, min_price: float, max_price: float) -> List[Service]:
        return self._catalog.filter_by_price(min_price, max_price)

    def filter_by_rating(self, min_rating: float) -> List[Service]:
        return self._catalog.filter_by_rating(min_rating)

    def get_popular_services(self, count: int = 10) -> List[Service]:
        return self._catalog.popular(count)

    def get_new_services(self, count: int = 10) -> List[Service]:
        return self._catalog.newest(count)

    def get_categories(self) -> List[str]:
        return self._catalog.categories

    def get_search_history(self) -> List[str]:
        return self._catalog.search_history

    def get_catalog_info(self) -> str:
        return self._catalog.info()

    def get_catalog_full_info(self) -> str:
        return self._catalog.full_info()

    # ---- requests ----

    def _request_index(self, request_id: str) -> int:
        target = parse_uuid(request_id)
        if target is None:
            return -1
        return _index_where(self._requests, lambda request: request.id == target)

    def get_all_requests(self) -> List[ServiceRequest]:
        return _copies(self._requests)

    def create_request(self, service_id: str, provider_id: str, description: str) -> str:
        """Create a request for the current user and return its id ("" on failure).

        Malformed service/provider ids are replaced by fresh ones instead of
        rejecting the request.
        """
        if self._session is None:
            return ""
        request = ServiceRequest(
            service_id=parse_uuid(service_id) or uuid4(),
            client_id=self._session.user_id,
            provider_id=parse_uuid(provider_id) or uuid4(),
        )
        request.set_description(description)
        self._requests.append(request)
        self._commit(REQUESTS)
        logger.info("Created request %s", request.id)
        return str(request.id)

    def delete_request(self, request_id: str) -> bool:
        idx = self._request_index(request_id)
        if idx < 0:
            return False
        del self._requests[idx]
        self._commit(REQUESTS)
        logger.info("Deleted request %s", request_id)
        return True

    def update_request_status(self, request_id: str, status_index: int) -> bool:
        idx = self._request_index(request_id)
        if idx < 0:
            return False
        self._requests[idx].set_status_from_index(status_index)
        self._commit(REQUESTS)
        logger.info("Request %s is now %s", request_id, self._requests[idx].status_name)
        return True

    def update_request_description(self, request_id: str, description: str) -> bool:
        idx = self._request_index(request_id)
        if idx < 0:
            return False
        self._requests[idx].set_description(description)
        self._commit(REQUESTS)
        return True

    def add_request_comment(self, request_id: str, comment: str) -> bool:
        if not comment.strip():
            return False
        idx = self._request_index(request_id)
        if idx < 0:
            return False
        self._requests[idx].add_comment(comment)
        self._commit(REQUESTS)
        return True

    # ---- reviews ----

    def get_reviews_for_service(self, service_id: str) -> List[Review]:
        target = parse_uuid(service_id)
        if target is None:
            return []
        return _copies([review for review in self._reviews if review.service_id == target])

    def add_review(self, service_id: str, rating: int, comment: str) -> bool:
        if self._session is None:
            return False
        target = parse_uuid(service_id)
        comment = comment.strip()
        if target is None or not comment:
            return False

        score = min(5, max(1, int(rating)))
        review = Review(client_id=self._session.user_id, service_id=target, rating=score, comment=comment)
        self._reviews.append(review)
        self._commit(REVIEWS)
        logger.info("Added review %s for service %s", review.id, target)
        self._merge_provider_rating(target, score)
        return True

    def _merge_provider_rating(self, service_id: Any, score: int) -> None:
        service = self._catalog.get(service_id)
        if service is None or service.provider_id is None:
            return
        idx = self._profile_index(service.provider_id)
        if idx < 0:
            return
        self._profiles[idx].add_rating(score)
        self._commit(PROFILES)

    # ---- subscriptions ----

    def _subscription_index(self, user_id: Any) -> int:
        return _index_where(self._subscriptions, lambda subscription: subscription.user_id == user_id)

    def get_my_subscription(self) -> Optional[Subscription]:
        if self._session is None:
            return None
        idx = self._subscription_index(self._session.user_id)
        return self._subscriptions[idx].model_copy(deep=True) if idx >= 0 else None

    def save_my_subscription(
        self,
        plan_type: str,
        price: float,
        start: Union[str, datetime, None],
        end: Union[str, datetime, None],
        active: bool,
    ) -> bool:
        if self._session is None:
            return False
        user_id = self._session.user_id
        idx = self._subscription_index(user_id)
        candidate = (
            self._subscriptions[idx].model_copy(deep=True)
            if idx >= 0
            else Subscription(user_id=user_id)
        )
        candidate.plan_type = plan_type
        candidate.price = price
        candidate.start_date = parse_timestamp(start)
        candidate.end_date = parse_timestamp(end)
        candidate.active = active
        if not candidate.is_valid():
            logger.debug("Subscription rejected for user %s", user_id)
            return False

        if idx >= 0:
            self._subscriptions[idx] = candidate
        else:
            self._subscriptions.append(candidate)
        self._commit(SUBSCRIPTIONS)
        logger.info("Saved subscription %s", candidate.id)
        return True

    def cancel_my_subscription(self) -> bool:
        if self._session is None:
            return False
        idx = self._subscription_index(self._session.user_id)
        if idx < 0:
            return False
        self._subscriptions[idx].cancel()
        self._commit(SUBSCRIPTIONS)
        logger.info("Cancelled subscription %s", self._subscriptions[idx].id)
        return True

    # ---- favorites ----

    def _my_favorites(self) -> Favorites:
        user_id = self._session.user_id
        idx = _index_where(self._favorites, lambda favorites: favorites.user_id == user_id)
        if idx < 0:
            self._favorites.append(Favorites(user_id=user_id))
            idx = len(self._favorites) - 1
        return self._favorites[idx]

    def get_my_favorites(self) -> Optional[Favorites]:
        if self._session is None:
            return None
        user_id = self._session.user_id
        idx = _index_where(self._favorites, lambda favorites: favorites.user_id == user_id)
        return self._favorites[idx].model_copy(deep=True) if idx >= 0 else None

    def toggle_favorite_service(self, service_id: str) -> bool:
        """Return True when the service is favorited after the call."""
        target = parse_uuid(service_id)
        if self._session is None or target is None:
            return False
        favorited = self._my_favorites().toggle_favorite_service(target)
        self._commit(FAVORITES)
        return favorited

    def toggle_favorite_provider(self, provider_id: str) -> bool:
        target = parse_uuid(provider_id)
        if self._session is None or target is None:
            return False
        favorited = self._my_favorites().toggle_favorite_provider(target)
        self._commit(FAVORITES)
        return favorited

    def add_viewed_service(self, service_id: str, cap: Optional[int] = None) -> bool:
        target = parse_uuid(service_id)
        if self._session is None or target is None:
            return False
        limit = self.view_history_limit if cap is None else cap
        self._my_favorites().add_viewed_service(target, limit)
        self._commit(FAVORITES)
        return True

    def clear_my_view_history(self) -> bool:
        if self._session is None:
            return False
        self._my_favorites().clear_view_history()
        self._commit(FAVORITES)
        return True


def create_store(settings: Optional[Settings] = None, events: Optional[EventBus] = None) -> MarketplaceStore:
    """Build the process-wide store from settings (environment by default)."""
    settings = settings or get_settings()
    return MarketplaceStore(
        data_dir=str(settings.data_dir),
        view_history_limit=settings.view_history_limit,
        search_history_limit=settings.search_history_limit,
        persist_accounts=settings.persist_accounts,
        events=events or EventBus(),
    )
