import math
from datetime import date, datetime, time, timezone
from enum import IntEnum
from typing import Annotated, Any, Dict, List, Mapping, Optional, Type, TypeVar
from uuid import UUID, uuid4

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel

E = TypeVar("E", bound="EntityModel")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_uuid(value: Any) -> Optional[UUID]:
    """Return the UUID for ``value`` or None when it is blank, nil or malformed."""
    if isinstance(value, UUID):
        return value if value.int else None
    if not isinstance(value, str):
        return None
    text = value.strip().strip("{}")
    if not text:
        return None
    try:
        parsed = UUID(text)
    except ValueError:
        return None
    return parsed if parsed.int else None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 text (date-only allowed). Naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time())
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> str:
    return value.isoformat(timespec="seconds") if value else ""


def short_id(value: Optional[UUID]) -> str:
    return str(value)[:8] if value else ""


def _coerce_id(value: Any) -> UUID:
    return parse_uuid(value) or uuid4()


def _timestamp_or_now(value: Any) -> datetime:
    return parse_timestamp(value) or utc_now()


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _as_trimmed_text(value: Any) -> str:
    return _as_text(value).strip()


def _as_float(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _as_count(value: Any) -> int:
    number = _as_float(value)
    return int(number) if number > 0 else 0


def _as_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    if isinstance(value, (int, float)):
        return bool(value)
    return False


def _clamp_price(value: Any) -> float:
    return max(0.0, _as_float(value))


def _clamp_rating(value: Any) -> float:
    return min(5.0, max(0.0, _as_float(value)))


def _unique_texts(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    items: List[str] = []
    for raw in value:
        text = _as_trimmed_text(raw)
        if text and text not in items:
            items.append(text)
    return items


def _clean_comments(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [text for text in (_as_trimmed_text(raw) for raw in value) if text]


def _unique_ids(value: Any) -> List[UUID]:
    if not isinstance(value, (list, tuple)):
        return []
    ids: List[UUID] = []
    for raw in value:
        parsed = parse_uuid(raw)
        if parsed and parsed not in ids:
            ids.append(parsed)
    return ids


EntityId = Annotated[UUID, BeforeValidator(_coerce_id)]
ForeignId = Annotated[Optional[UUID], BeforeValidator(parse_uuid)]
Text = Annotated[str, BeforeValidator(_as_text)]
TrimmedText = Annotated[str, BeforeValidator(_as_trimmed_text)]
Timestamp = Annotated[datetime, BeforeValidator(_timestamp_or_now)]
OptionalTimestamp = Annotated[Optional[datetime], BeforeValidator(parse_timestamp)]
Price = Annotated[float, BeforeValidator(_clamp_price)]
Rating = Annotated[float, BeforeValidator(_clamp_rating)]
Flag = Annotated[bool, BeforeValidator(_as_flag)]
MediaList = Annotated[List[str], BeforeValidator(_unique_texts)]
CommentList = Annotated[List[str], BeforeValidator(_clean_comments)]
IdList = Annotated[List[UUID], BeforeValidator(_unique_ids)]


class EntityModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_json(cls: Type[E], data: Mapping[str, Any]) -> E:
        return cls.model_validate(dict(data))


class Service(EntityModel):
    id: EntityId = Field(default_factory=uuid4)
    provider_id: ForeignId = None
    title: Text = ""
    description: Text = ""
    category: Text = ""
    price: Price = 0.0
    active: Flag = True
    rating: Rating = 0.0
    media: MediaList = Field(default_factory=list)
    created_at: Timestamp = Field(default_factory=utc_now)

    def add_media(self, path: str) -> None:
        cleaned = path.strip()
        if cleaned and cleaned not in self.media:
            self.media.append(cleaned)

    def remove_media(self, path: str) -> None:
        cleaned = path.strip()
        self.media = [item for item in self.media if item != cleaned]

    def clear_media(self) -> None:
        self.media = []

    def has_media(self, path: str) -> bool:
        return path in self.media

    def info(self) -> str:
        return f"{self.title or 'Untitled'} | {self.price:.2f} ₽ | {self.rating:.1f}★"

    def full_info(self) -> str:
        return (
            "Service:\n"
            f"  id: {self.id}\n"
            f"  providerId: {self.provider_id or ''}\n"
            f"  title: {self.title}\n"
            f"  category: {self.category}\n"
            f"  price: {self.price:.2f}\n"
            f"  active: {'true' if self.active else 'false'}\n"
            f"  rating: {self.rating:.2f}\n"
            f"  media: {', '.join(self.media)}\n"
            f"  createdAt: {format_timestamp(self.created_at)}\n"
            f"  description: {self.description}\n"
        )


class RequestStatus(IntEnum):
    PENDING = 0
    ACCEPTED = 1
    IN_PROGRESS = 2
    COMPLETED = 3
    CANCELLED = 4

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]

    @classmethod
    def from_index(cls, index: int) -> "RequestStatus":
        return cls(min(max(int(index), 0), len(cls) - 1))

    @classmethod
    def parse(cls, value: Any) -> "RequestStatus":
        """Accept the stored integer form or a legacy status name."""
        if isinstance(value, RequestStatus):
            return value
        if isinstance(value, bool):
            return cls.PENDING
        if isinstance(value, (int, float)):
            return cls.from_index(int(value)) if math.isfinite(value) else cls.PENDING
        if isinstance(value, str):
            key = value.strip().lower()
            if key.lstrip("-").isdigit():
                return cls.from_index(int(key))
            return _STATUS_NAMES.get(key, cls.PENDING)
        return cls.PENDING


_STATUS_LABELS = {
    RequestStatus.PENDING: "Pending",
    RequestStatus.ACCEPTED: "Accepted",
    RequestStatus.IN_PROGRESS: "InProgress",
    RequestStatus.COMPLETED: "Completed",
    RequestStatus.CANCELLED: "Cancelled",
}

_STATUS_NAMES = {
    "pending": RequestStatus.PENDING,
    "accepted": RequestStatus.ACCEPTED,
    "inprogress": RequestStatus.IN_PROGRESS,
    "in progress": RequestStatus.IN_PROGRESS,
    "in_progress": RequestStatus.IN_PROGRESS,
    "completed": RequestStatus.COMPLETED,
    "cancelled": RequestStatus.CANCELLED,
    "canceled": RequestStatus.CANCELLED,
}


class ServiceRequest(EntityModel):
    id: EntityId = Field(default_factory=uuid4)
    service_id: ForeignId = None
    client_id: ForeignId = None
    provider_id: ForeignId = None
    description: Text = ""
    status: Annotated[RequestStatus, BeforeValidator(RequestStatus.parse)] = RequestStatus.PENDING
    created_at: Timestamp = Field(default_factory=utc_now)
    completed_at: OptionalTimestamp = None
    comments: CommentList = Field(default_factory=list)

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "ServiceRequest":
        request = super().from_json(data)
        # Older files may carry Completed without a completion time.
        if request.status is RequestStatus.COMPLETED and request.completed_at is None:
            request.completed_at = request.created_at
        return request

    @property
    def status_name(self) -> str:
        return self.status.label

    def set_description(self, description: str) -> None:
        self.description = description.strip()

    def update_status(self, new_status: RequestStatus) -> None:
        new_status = RequestStatus.parse(new_status)
        if new_status is self.status:
            return
        self.status = new_status
        # completed_at is stamped on the first entry into Completed only.
        if new_status is RequestStatus.COMPLETED and self.completed_at is None:
            self.completed_at = utc_now()

    def set_status_from_index(self, index: int) -> None:
        self.update_status(RequestStatus.from_index(index))

    def add_comment(self, comment: str) -> bool:
        cleaned = comment.strip()
        if not cleaned:
            return False
        self.comments.append(cleaned)
        return True

    def info(self) -> str:
        return f"Request {short_id(self.id)} | {self.status_name}"

    def full_info(self) -> str:
        return (
            "=== REQUEST ===\n"
            f"id: {self.id}\n"
            f"serviceId: {self.service_id or ''}\n"
            f"clientId: {self.client_id or ''}\n"
            f"providerId: {self.provider_id or ''}\n"
            f"status: {self.status_name}\n"
            f"description: {self.description}\n"
            f"createdAt: {format_timestamp(self.created_at)}\n"
            f"completedAt: {format_timestamp(self.completed_at)}\n"
            f"comments: {len(self.comments)}\n"
        )


class Review(EntityModel):
    id: EntityId = Field(default_factory=uuid4)
    client_id: ForeignId = None
    service_id: ForeignId = None
    rating: Annotated[float, BeforeValidator(_as_float)] = 0.0
    comment: Text = ""
    created_at: OptionalTimestamp = Field(default_factory=utc_now)

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "Review":
        payload = dict(data)
        payload.setdefault("createdAt", None)
        return super().from_json(payload)

    def info(self) -> str:
        return f"Review {short_id(self.id)} | {self.rating:.0f}★ | {self.comment}"


class Subscription(EntityModel):
    id: EntityId = Field(default_factory=uuid4, alias="subscriptionId")
    user_id: ForeignId = None
    plan_type: TrimmedText = ""
    price: Price = 0.0
    start_date: OptionalTimestamp = None
    end_date: OptionalTimestamp = None
    active: Flag = False

    def is_valid(self) -> bool:
        if self.user_id is None or not self.plan_type.strip():
            return False
        if self.price < 0:
            return False
        if self.start_date and self.end_date and self.end_date < self.start_date:
            return False
        return True

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.end_date is None:
            return False
        return (now or utc_now()) >= self.end_date

    def cancel(self, now: Optional[datetime] = None) -> None:
        moment = now or utc_now()
        self.active = False
        if self.end_date is None or self.end_date > moment:
            self.end_date = moment

    def info(self) -> str:
        state = "active" if self.active else "inactive"
        return f"Subscription {short_id(self.id)} | {self.plan_type or 'NoPlan'} | {state}"

    def full_info(self) -> str:
        return (
            "=== SUBSCRIPTION ===\n"
            f"subscriptionId: {self.id}\n"
            f"userId: {self.user_id or ''}\n"
            f"planType: {self.plan_type}\n"
            f"price: {self.price:.2f}\n"
            f"startDate: {format_timestamp(self.start_date)}\n"
            f"endDate: {format_timestamp(self.end_date)}\n"
            f"active: {'true' if self.active else 'false'}\n"
        )


class Favorites(EntityModel):
    id: EntityId = Field(default_factory=uuid4, alias="favoritesId")
    user_id: ForeignId = None
    favorite_service_ids: IdList = Field(default_factory=list)
    favorite_provider_ids: IdList = Field(default_factory=list)
    viewed_service_ids: IdList = Field(default_factory=list)
    last_updated: Timestamp = Field(default_factory=utc_now)

    def touch(self) -> None:
        self.last_updated = utc_now()

    @staticmethod
    def _toggle(ids: List[UUID], item_id: UUID) -> bool:
        if item_id in ids:
            ids.remove(item_id)
            return False
        ids.append(item_id)
        return True

    def toggle_favorite_service(self, service_id: UUID) -> bool:
        item_id = parse_uuid(service_id)
        if item_id is None:
            return False
        favorited = self._toggle(self.favorite_service_ids, item_id)
        self.touch()
        return favorited

    def toggle_favorite_provider(self, provider_id: UUID) -> bool:
        item_id = parse_uuid(provider_id)
        if item_id is None:
            return False
        favorited = self._toggle(self.favorite_provider_ids, item_id)
        self.touch()
        return favorited

    def add_viewed_service(self, service_id: UUID, max_items: int = 50) -> None:
        item_id = parse_uuid(service_id)
        if item_id is None:
            return
        max_items = max(1, max_items)
        history = [item for item in self.viewed_service_ids if item != item_id]
        history.insert(0, item_id)
        self.viewed_service_ids = history[:max_items]
        self.touch()

    def clear_view_history(self) -> None:
        self.viewed_service_ids = []
        self.touch()

    def info(self) -> str:
        return (
            f"Favorites {short_id(self.id)} | services={len(self.favorite_service_ids)} "
            f"providers={len(self.favorite_provider_ids)} history={len(self.viewed_service_ids)}"
        )

    def full_info(self) -> str:
        return (
            "=== FAVORITES ===\n"
            f"favoritesId: {self.id}\n"
            f"userId: {self.user_id or ''}\n"
            f"lastUpdated: {format_timestamp(self.last_updated)}\n"
            f"favoriteServices: {len(self.favorite_service_ids)}\n"
            f"favoriteProviders: {len(self.favorite_provider_ids)}\n"
            f"viewHistory: {len(self.viewed_service_ids)}\n"
        )


class Profile(EntityModel):
    id: EntityId = Field(default_factory=uuid4, alias="profileId")
    owner_user_id: ForeignId = None
    name: Text = ""
    description: Text = ""
    avatar_path: Text = ""
    contact_email: Text = ""
    contact_phone: Text = ""
    rating: Rating = 0.0
    review_count: Annotated[int, BeforeValidator(_as_count)] = 0
    verified: Flag = Field(default=False, alias="isVerified")
    created_at: Timestamp = Field(default_factory=utc_now)

    def add_rating(self, sample: float) -> None:
        """Merge one rating sample (clamped to 0..5) into the running mean."""
        value = _clamp_rating(sample)
        total = self.rating * self.review_count + value
        self.review_count += 1
        self.rating = total / self.review_count


class UserRole(IntEnum):
    CLIENT = 0
    PROVIDER = 1
    ADMIN = 2

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def from_index(cls, index: int) -> "UserRole":
        return cls(min(max(int(index), 0), len(cls) - 1))

    @classmethod
    def parse(cls, value: Any) -> "UserRole":
        if isinstance(value, UserRole):
            return value
        if isinstance(value, int) and not isinstance(value, bool) and value in (1, 2):
            return cls(value)
        return cls.CLIENT


class UserRecord(EntityModel):
    id: EntityId = Field(default_factory=uuid4)
    email: TrimmedText = ""
    phone: TrimmedText = ""
    role: Annotated[UserRole, BeforeValidator(UserRole.parse)] = UserRole.CLIENT
    password_hash: Text = ""
    salt: Text = ""
    verified: Flag = False
    verification_code: Text = ""
    created_at: Timestamp = Field(default_factory=utc_now)

    def matches_identifier(self, identifier: str) -> bool:
        key = identifier.strip()
        if not key:
            return False
        if self.email.casefold() == key.casefold():
            return True
        return bool(self.phone) and self.phone == key


class Session(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: UUID
    email: str
    phone: str = ""
    role: UserRole = UserRole.CLIENT
    verified: bool = False

    @property
    def role_name(self) -> str:
        return self.role.label

    @classmethod
    def from_user(cls, user: UserRecord) -> "Session":
        return cls(
            user_id=user.id,
            email=user.email,
            phone=user.phone,
            role=user.role,
            verified=user.verified,
        )
