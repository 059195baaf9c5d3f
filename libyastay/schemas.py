# Pydantic models (request/response DTOs) used by the API layer.
# Keep models minimal and serializable; business logic lives in services/.
import json
import os
from datetime import date, datetime
from typing import Annotated, Any, ClassVar, FrozenSet, List, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)


Role = Literal["guest", "host", "admin"]
BookingStatus = Literal["pending", "confirmed", "declined", "cancelled", "completed"]
CancellationPolicy = Literal["flexible", "moderate", "strict"]

# Longest stay that can be quoted, searched or booked
MAX_STAY_NIGHTS = int(os.getenv("MAX_STAY_NIGHTS", "365"))


def _strip(v: Any) -> Any:
    if isinstance(v, str):
        v = v.strip()
    return v


def _normalize_email(v: Any) -> Any:
    if isinstance(v, str):
        v = v.strip().lower()
    return v


class PatchModel(BaseModel):
    """
    Base for PATCH payloads: every field is optional and only fields the client
    actually sent are applied. Names listed in ``non_nullable`` may be omitted
    but not set to null.
    """
    non_nullable: ClassVar[FrozenSet[str]] = frozenset()

    @model_validator(mode="after")
    def reject_explicit_null(self):
        for name in self.model_fields_set & self.non_nullable:
            if getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


# ----------------
# Users and authentication
# ----------------
class UserRead(BaseModel):
    user_id: str
    email: EmailStr
    phone_number: str
    name: str
    profile_picture_url: Optional[str] = None
    bio: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    role: Role
    is_verified: bool
    verification_document_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Request payload for user registration
class RegisterRequest(BaseModel):
    email: EmailStr
    phone_number: str = Field(..., min_length=1, max_length=20)
    # Older clients send the plaintext password under "password_hash"
    password: str = Field(
        ...,
        min_length=8,
        max_length=255,
        validation_alias=AliasChoices("password", "password_hash"),
    )
    name: str = Field(..., min_length=1, max_length=100)
    # traveler/both are client-side aliases; admins are never self-registered
    role: Literal["guest", "host", "traveler", "both"] = "guest"
    profile_picture_url: Optional[str] = Field(None, max_length=500)
    bio: Optional[str] = Field(None, max_length=1000)
    emergency_contact_name: Optional[str] = Field(None, max_length=100)
    emergency_contact_phone: Optional[str] = Field(None, max_length=20)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _normalize_email(v)

    @field_validator("name", "phone_number", mode="before")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return _strip(v)

    @field_validator("role")
    @classmethod
    def map_role_alias(cls, v: str) -> str:
        return {"traveler": "guest", "both": "host"}.get(v, v)


# Request payload for logging in
class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _normalize_email(v)


# Token bundled with the current user profile
class AuthResponse(BaseModel):
    user: UserRead
    token: str
    token_type: str = "bearer"


class VerifyResponse(BaseModel):
    user: UserRead
    valid: bool = True


class UserPatch(PatchModel):
    non_nullable: ClassVar[FrozenSet[str]] = frozenset(
        {"email", "phone_number", "name", "role", "is_verified", "password"}
    )

    email: Optional[EmailStr] = None
    phone_number: Optional[str] = Field(None, min_length=1, max_length=20)
    password: Optional[str] = Field(None, min_length=8, max_length=255)
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    profile_picture_url: Optional[str] = Field(None, max_length=500)
    bio: Optional[str] = Field(None, max_length=1000)
    emergency_contact_name: Optional[str] = Field(None, max_length=100)
    emergency_contact_phone: Optional[str] = Field(None, max_length=20)
    verification_document_url: Optional[str] = Field(None, max_length=500)
    # admin-only fields
    role: Optional[Role] = None
    is_verified: Optional[bool] = None

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _normalize_email(v)


# ----------------
# Properties
# ----------------
# Base attributes for a property listing (shared by create/read)
class PropertyBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    city: str = Field(..., min_length=1, max_length=100)
    neighborhood: Optional[str] = Field(None, max_length=100)
    address: Optional[str] = Field(None, max_length=255)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    property_type: str = Field(..., min_length=1, max_length=50)
    guest_capacity: int = Field(..., gt=0)
    bedrooms: int = Field(..., ge=0)
    beds: int = Field(..., gt=0)
    bathrooms: int = Field(..., gt=0)
    amenities: Optional[str] = Field(None, max_length=1000)
    base_price_cents: int = Field(..., gt=0)
    currency: str = Field("LYD", min_length=3, max_length=3)
    has_power_backup: bool = False
    has_water_tank: bool = False
    house_rules: Optional[str] = Field(None, max_length=1000)
    cancellation_policy: CancellationPolicy
    instant_book: bool = False
    is_active: bool = True

    # Trim surrounding whitespace before validation
    @field_validator("title", "city", "property_type", mode="before")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return _strip(v)


# Payload for creating a new property
class PropertyCreate(PropertyBase):
    pass


# Response shape when reading a property from the API
class PropertyRead(PropertyBase):
    property_id: str
    host_id: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PropertyPatch(PatchModel):
    non_nullable: ClassVar[FrozenSet[str]] = frozenset(
        {
            "title", "description", "city", "property_type", "guest_capacity", "bedrooms", "beds",
            "bathrooms", "base_price_cents", "currency", "has_power_backup", "has_water_tank",
            "cancellation_policy", "instant_book", "is_active",
        }
    )

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    city: Optional[str] = Field(None, min_length=1, max_length=100)
    neighborhood: Optional[str] = Field(None, max_length=100)
    address: Optional[str] = Field(None, max_length=255)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    property_type: Optional[str] = Field(None, min_length=1, max_length=50)
    guest_capacity: Optional[int] = Field(None, gt=0)
    bedrooms: Optional[int] = Field(None, ge=0)
    beds: Optional[int] = Field(None, gt=0)
    bathrooms: Optional[int] = Field(None, gt=0)
    amenities: Optional[str] = Field(None, max_length=1000)
    base_price_cents: Optional[int] = Field(None, gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    has_power_backup: Optional[bool] = None
    has_water_tank: Optional[bool] = None
    house_rules: Optional[str] = Field(None, max_length=1000)
    cancellation_policy: Optional[CancellationPolicy] = None
    instant_book: Optional[bool] = None
    is_active: Optional[bool] = None


class PropertySearchResponse(BaseModel):
    properties: List[PropertyRead]
    total_count: int


# Photos
def _http_url(v: str) -> str:
    if not v.startswith(("http://", "https://")):
        raise ValueError("photo_url must be an http(s) URL")
    return v


class PhotoCreate(BaseModel):
    photo_url: str = Field(..., min_length=1, max_length=500)
    caption: Optional[str] = Field(None, max_length=255)
    display_order: int = Field(0, ge=0)

    @field_validator("photo_url")
    @classmethod
    def require_http_url(cls, v: str) -> str:
        return _http_url(v)


class PhotoPatch(PatchModel):
    non_nullable: ClassVar[FrozenSet[str]] = frozenset({"photo_url", "display_order"})

    photo_url: Optional[str] = Field(None, min_length=1, max_length=500)
    caption: Optional[str] = Field(None, max_length=255)
    display_order: Optional[int] = Field(None, ge=0)

    @field_validator("photo_url")
    @classmethod
    def require_http_url(cls, v: Optional[str]) -> Optional[str]:
        return v if v is None else _http_url(v)


class PhotoRead(BaseModel):
    photo_id: str
    property_id: str
    photo_url: str
    caption: Optional[str] = None
    display_order: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ----------------
# Availability ledger
# ----------------
class AvailabilityUpsert(BaseModel):
    date: date
    is_available: bool = True
    price_override_cents: Optional[int] = Field(None, gt=0)


class AvailabilityRead(BaseModel):
    availability_id: str
    property_id: str
    date: date
    is_available: bool
    price_override_cents: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class NightlyRate(BaseModel):
    date: date
    price_cents: int


# Price breakdown for a prospective stay
class StayQuote(BaseModel):
    property_id: str
    check_in: date
    check_out: date
    nights: int
    nightly_rates: List[NightlyRate]
    subtotal_cents: int
    service_fee_cents: int
    total_cents: int
    currency: str
    available: bool


# ----------------
# Bookings
# ----------------
# Request payload for creating a booking; prices are always computed server-side
class BookingCreate(BaseModel):
    property_id: str = Field(..., min_length=1)
    check_in: date
    check_out: date
    guest_count: int = Field(..., gt=0)
    special_requests: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def check_out_after_check_in(self):
        if self.check_out <= self.check_in:
            raise ValueError("check_out must be after check_in")
        if (self.check_out - self.check_in).days > MAX_STAY_NIGHTS:
            raise ValueError(f"Stays are limited to {MAX_STAY_NIGHTS} nights")
        return self


# API response for a booking record
class BookingRead(BaseModel):
    booking_id: str
    property_id: str
    guest_id: str
    host_id: str
    check_in: date
    check_out: date
    guest_count: int
    total_cents: int
    service_fee_cents: int
    currency: str
    special_requests: Optional[str] = None
    status: BookingStatus
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookingPatch(PatchModel):
    non_nullable: ClassVar[FrozenSet[str]] = frozenset({"status"})

    status: Optional[BookingStatus] = None
    special_requests: Optional[str] = Field(None, max_length=500)


class BookingListResponse(BaseModel):
    bookings: List[BookingRead]
    total_count: int


# ----------------
# Conversations and messages
# ----------------
class ConversationCreate(BaseModel):
    booking_id: str = Field(..., min_length=1)


class ConversationRead(BaseModel):
    conversation_id: str
    booking_id: str
    guest_id: str
    host_id: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# API response for a chat message
class MessageRead(BaseModel):
    message_id: str
    conversation_id: str
    sender_id: str
    content: str
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Request payload for sending a message
class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=1000)

    # Trim surrounding whitespace before validation
    @field_validator("content", mode="before")
    @classmethod
    def normalize_content(cls, v: str) -> str:
        return _strip(v)


class MessagePatch(PatchModel):
    non_nullable: ClassVar[FrozenSet[str]] = frozenset({"is_read", "content"})

    is_read: Optional[bool] = None
    content: Optional[str] = Field(None, min_length=1, max_length=1000)

    @field_validator("content", mode="before")
    @classmethod
    def normalize_content(cls, v: str) -> str:
        return _strip(v)


# ----------------
# Reviews
# ----------------
Rating = Annotated[int, Field(ge=1, le=5)]


class ReviewCreate(BaseModel):
    cleanliness_rating: Rating
    accuracy_rating: Rating
    communication_rating: Rating
    location_rating: Rating
    check_in_rating: Rating
    value_rating: Rating
    overall_rating: Rating
    comment: Optional[str] = Field(None, max_length=1000)


class ReviewRead(ReviewCreate):
    review_id: str
    booking_id: str
    property_id: str
    reviewer_id: str
    host_id: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReviewListResponse(BaseModel):
    reviews: List[ReviewRead]
    total_count: int


class PropertyReviewsResponse(ReviewListResponse):
    average_rating: Optional[float] = None


# ----------------
# Notifications
# ----------------
class NotificationRead(BaseModel):
    notification_id: str
    user_id: str
    type: str
    title: str
    message: str
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[str] = None
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NotificationPatch(BaseModel):
    is_read: bool


class MarkAllReadResponse(BaseModel):
    updated: int


# ----------------
# Admin
# ----------------
class AdminActionRead(BaseModel):
    action_id: str
    admin_id: str
    action_type: str
    target_entity_type: str
    target_entity_id: str
    details: Optional[Any] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("details", mode="before")
    @classmethod
    def parse_details(cls, v: Any) -> Any:
        if isinstance(v, str):
            try:
                return json.loads(v)
            except ValueError:
                return v
        return v


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
