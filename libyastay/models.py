# SQLAlchemy ORM models for the marketplace tables.
# Keep business logic out of models; state transitions and side effects live in services/.
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_mixin

from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str):
    """Column default factory producing opaque ids such as ``book_3f2a...``."""
    def _make() -> str:
        return f"{prefix}_{uuid4().hex}"
    return _make


@declarative_mixin
class TimestampMixin:
    """UTC timestamps managed on the Python side.

    Ids are random strings, so created_at is the only ordering key; Python-side
    defaults keep sub-second resolution on every backend.
    """
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class User(Base, TimestampMixin):
    """Marketplace account.

    Roles:
    - guest: searches, books and reviews
    - host: lists properties and handles booking requests
    - admin: moderates everything; seeded, never self-registered
    """
    __tablename__ = "users"

    user_id = Column(String(40), primary_key=True, default=new_id("user"))
    email = Column(String(255), nullable=False, unique=True, index=True)
    phone_number = Column(String(20), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)
    profile_picture_url = Column(String(500), nullable=True)
    bio = Column(Text, nullable=True)
    emergency_contact_name = Column(String(100), nullable=True)
    emergency_contact_phone = Column(String(20), nullable=True)
    role = Column(String(20), nullable=False, index=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    verification_document_url = Column(String(500), nullable=True)


class Property(Base, TimestampMixin):
    """Rental listing owned by a host. ``is_active=False`` is a soft delete."""
    __tablename__ = "properties"

    property_id = Column(String(40), primary_key=True, default=new_id("prop"))
    host_id = Column(String(40), ForeignKey("users.user_id"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    city = Column(String(100), nullable=False, index=True)
    neighborhood = Column(String(100), nullable=True)
    address = Column(String(255), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    property_type = Column(String(50), nullable=False)
    guest_capacity = Column(Integer, nullable=False)
    bedrooms = Column(Integer, nullable=False)
    beds = Column(Integer, nullable=False)
    bathrooms = Column(Integer, nullable=False)
    amenities = Column(Text, nullable=True)  # comma-separated
    base_price_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="LYD")
    has_power_backup = Column(Boolean, nullable=False, default=False)
    has_water_tank = Column(Boolean, nullable=False, default=False)
    house_rules = Column(Text, nullable=True)
    cancellation_policy = Column(String(20), nullable=False)
    instant_book = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True, index=True)


class PropertyPhoto(Base):
    __tablename__ = "property_photos"

    photo_id = Column(String(40), primary_key=True, default=new_id("photo"))
    property_id = Column(String(40), ForeignKey("properties.property_id"), nullable=False, index=True)
    photo_url = Column(String(500), nullable=False)
    caption = Column(String(255), nullable=True)
    display_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class AvailabilityRecord(Base):
    """Per-date exception in a property's calendar; no row means available."""
    __tablename__ = "property_availability"

    availability_id = Column(String(40), primary_key=True, default=new_id("avail"))
    property_id = Column(String(40), ForeignKey("properties.property_id"), nullable=False)
    date = Column(Date, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    price_override_cents = Column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("property_id", "date", name="uq_availability_property_date"),
    )


class Booking(Base, TimestampMixin):
    """Reservation of a property by a guest.

    Status transitions:
    pending -> confirmed -> completed
       |          └──────> cancelled
       ├──> declined
       └──> cancelled

    host_id is copied from the property at creation and never follows later
    changes to the listing.
    """
    __tablename__ = "bookings"

    booking_id = Column(String(40), primary_key=True, default=new_id("book"))
    property_id = Column(String(40), ForeignKey("properties.property_id"), nullable=False, index=True)
    guest_id = Column(String(40), ForeignKey("users.user_id"), nullable=False, index=True)
    host_id = Column(String(40), ForeignKey("users.user_id"), nullable=False, index=True)
    check_in = Column(Date, nullable=False)
    check_out = Column(Date, nullable=False)
    guest_count = Column(Integer, nullable=False)
    total_cents = Column(Integer, nullable=False)
    service_fee_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="LYD")
    special_requests = Column(String(500), nullable=True)
    status = Column(String(20), nullable=False, default="pending")

    # Indexed access patterns: overlap checks per property/date range and status filters
    __table_args__ = (
        Index("ix_bookings_property_check_in", "property_id", "check_in"),
        Index("ix_bookings_property_check_out", "property_id", "check_out"),
        Index("ix_bookings_status", "status"),
        CheckConstraint("check_in < check_out", name="ck_bookings_date_range"),
    )


class Conversation(Base, TimestampMixin):
    """Guest/host thread attached to exactly one booking."""
    __tablename__ = "conversations"

    conversation_id = Column(String(40), primary_key=True, default=new_id("conv"))
    booking_id = Column(String(40), ForeignKey("bookings.booking_id"), nullable=False, unique=True)
    guest_id = Column(String(40), ForeignKey("users.user_id"), nullable=False, index=True)
    host_id = Column(String(40), ForeignKey("users.user_id"), nullable=False, index=True)


class Message(Base):
    __tablename__ = "messages"

    message_id = Column(String(40), primary_key=True, default=new_id("msg"))
    conversation_id = Column(String(40), ForeignKey("conversations.conversation_id"), nullable=False, index=True)
    sender_id = Column(String(40), ForeignKey("users.user_id"), nullable=False, index=True)
    content = Column(String(1000), nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Timeline queries per conversation
    __table_args__ = (
        Index("ix_messages_conversation_created_at", "conversation_id", "created_at"),
    )


class Review(Base, TimestampMixin):
    """Guest review of a completed booking; at most one per booking."""
    __tablename__ = "reviews"

    review_id = Column(String(40), primary_key=True, default=new_id("rev"))
    booking_id = Column(String(40), ForeignKey("bookings.booking_id"), nullable=False, unique=True)
    property_id = Column(String(40), ForeignKey("properties.property_id"), nullable=False, index=True)
    reviewer_id = Column(String(40), ForeignKey("users.user_id"), nullable=False, index=True)
    host_id = Column(String(40), ForeignKey("users.user_id"), nullable=False, index=True)
    cleanliness_rating = Column(Integer, nullable=False)
    accuracy_rating = Column(Integer, nullable=False)
    communication_rating = Column(Integer, nullable=False)
    location_rating = Column(Integer, nullable=False)
    check_in_rating = Column(Integer, nullable=False)
    value_rating = Column(Integer, nullable=False)
    overall_rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)


class Notification(Base):
    __tablename__ = "notifications"

    notification_id = Column(String(40), primary_key=True, default=new_id("notif"))
    user_id = Column(String(40), ForeignKey("users.user_id"), nullable=False)
    type = Column(String(50), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(String(1000), nullable=False)
    related_entity_type = Column(String(50), nullable=True)
    related_entity_id = Column(String(40), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_notifications_user_created_at", "user_id", "created_at"),
    )


class AdminAction(Base):
    """Append-only audit trail of admin interventions."""
    __tablename__ = "admin_actions"

    action_id = Column(String(40), primary_key=True, default=new_id("act"))
    admin_id = Column(String(40), ForeignKey("users.user_id"), nullable=False, index=True)
    action_type = Column(String(50), nullable=False)
    target_entity_type = Column(String(50), nullable=False)
    target_entity_id = Column(String(40), nullable=False)
    details = Column(Text, nullable=True)  # JSON document
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
