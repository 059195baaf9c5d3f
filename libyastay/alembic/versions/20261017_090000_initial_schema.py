"""initial marketplace schema

Revision ID: a1c4e7f20b31
Revises:
Create Date: 2026-10-17 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a1c4e7f20b31"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("user_id", sa.String(length=40), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("phone_number", sa.String(length=20), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("profile_picture_url", sa.String(length=500), nullable=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("emergency_contact_name", sa.String(length=100), nullable=True),
        sa.Column("emergency_contact_phone", sa.String(length=20), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("is_verified", sa.Boolean(), nullable=False),
        sa.Column("verification_document_url", sa.String(length=500), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("phone_number"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "properties",
        sa.Column("property_id", sa.String(length=40), primary_key=True, nullable=False),
        sa.Column("host_id", sa.String(length=40), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("city", sa.String(length=100), nullable=False),
        sa.Column("neighborhood", sa.String(length=100), nullable=True),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("property_type", sa.String(length=50), nullable=False),
        sa.Column("guest_capacity", sa.Integer(), nullable=False),
        sa.Column("bedrooms", sa.Integer(), nullable=False),
        sa.Column("beds", sa.Integer(), nullable=False),
        sa.Column("bathrooms", sa.Integer(), nullable=False),
        sa.Column("amenities", sa.Text(), nullable=True),
        sa.Column("base_price_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("has_power_backup", sa.Boolean(), nullable=False),
        sa.Column("has_water_tank", sa.Boolean(), nullable=False),
        sa.Column("house_rules", sa.Text(), nullable=True),
        sa.Column("cancellation_policy", sa.String(length=20), nullable=False),
        sa.Column("instant_book", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_properties_host_id", "properties", ["host_id"])
    op.create_index("ix_properties_city", "properties", ["city"])
    op.create_index("ix_properties_is_active", "properties", ["is_active"])

    op.create_table(
        "property_photos",
        sa.Column("photo_id", sa.String(length=40), primary_key=True, nullable=False),
        sa.Column("property_id", sa.String(length=40), sa.ForeignKey("properties.property_id"), nullable=False),
        sa.Column("photo_url", sa.String(length=500), nullable=False),
        sa.Column("caption", sa.String(length=255), nullable=True),
        sa.Column("display_order", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_property_photos_property_id", "property_photos", ["property_id"])

    op.create_table(
        "property_availability",
        sa.Column("availability_id", sa.String(length=40), primary_key=True, nullable=False),
        sa.Column("property_id", sa.String(length=40), sa.ForeignKey("properties.property_id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False),
        sa.Column("price_override_cents", sa.Integer(), nullable=True),
        sa.UniqueConstraint("property_id", "date", name="uq_availability_property_date"),
    )

    op.create_table(
        "bookings",
        sa.Column("booking_id", sa.String(length=40), primary_key=True, nullable=False),
        sa.Column("property_id", sa.String(length=40), sa.ForeignKey("properties.property_id"), nullable=False),
        sa.Column("guest_id", sa.String(length=40), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("host_id", sa.String(length=40), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("check_in", sa.Date(), nullable=False),
        sa.Column("check_out", sa.Date(), nullable=False),
        sa.Column("guest_count", sa.Integer(), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("service_fee_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("special_requests", sa.String(length=500), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("check_in < check_out", name="ck_bookings_date_range"),
    )
    # Overlap checks per property/date range and status filters
    op.create_index("ix_bookings_property_id", "bookings", ["property_id"])
    op.create_index("ix_bookings_guest_id", "bookings", ["guest_id"])
    op.create_index("ix_bookings_host_id", "bookings", ["host_id"])
    op.create_index("ix_bookings_property_check_in", "bookings", ["property_id", "check_in"])
    op.create_index("ix_bookings_property_check_out", "bookings", ["property_id", "check_out"])
    op.create_index("ix_bookings_status", "bookings", ["status"])

    op.create_table(
        "conversations",
        sa.Column("conversation_id", sa.String(length=40), primary_key=True, nullable=False),
        sa.Column("booking_id", sa.String(length=40), sa.ForeignKey("bookings.booking_id"), nullable=False),
        sa.Column("guest_id", sa.String(length=40), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("host_id", sa.String(length=40), sa.ForeignKey("users.user_id"), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("booking_id"),
    )
    op.create_index("ix_conversations_guest_id", "conversations", ["guest_id"])
    op.create_index("ix_conversations_host_id", "conversations", ["host_id"])

    op.create_table(
        "messages",
        sa.Column("message_id", sa.String(length=40), primary_key=True, nullable=False),
        sa.Column("conversation_id", sa.String(length=40), sa.ForeignKey("conversations.conversation_id"), nullable=False),
        sa.Column("sender_id", sa.String(length=40), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("content", sa.String(length=1000), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_messages_conversation_id", "messages", ["conversation_id"])
    op.create_index("ix_messages_sender_id", "messages", ["sender_id"])
    op.create_index("ix_messages_conversation_created_at", "messages", ["conversation_id", "created_at"])

    op.create_table(
        "reviews",
        sa.Column("review_id", sa.String(length=40), primary_key=True, nullable=False),
        sa.Column("booking_id", sa.String(length=40), sa.ForeignKey("bookings.booking_id"), nullable=False),
        sa.Column("property_id", sa.String(length=40), sa.ForeignKey("properties.property_id"), nullable=False),
        sa.Column("reviewer_id", sa.String(length=40), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("host_id", sa.String(length=40), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("cleanliness_rating", sa.Integer(), nullable=False),
        sa.Column("accuracy_rating", sa.Integer(), nullable=False),
        sa.Column("communication_rating", sa.Integer(), nullable=False),
        sa.Column("location_rating", sa.Integer(), nullable=False),
        sa.Column("check_in_rating", sa.Integer(), nullable=False),
        sa.Column("value_rating", sa.Integer(), nullable=False),
        sa.Column("overall_rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        *_timestamps(),
        # At most one review per booking
        sa.UniqueConstraint("booking_id"),
    )
    op.create_index("ix_reviews_property_id", "reviews", ["property_id"])
    op.create_index("ix_reviews_reviewer_id", "reviews", ["reviewer_id"])
    op.create_index("ix_reviews_host_id", "reviews", ["host_id"])

    op.create_table(
        "notifications",
        sa.Column("notification_id", sa.String(length=40), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=40), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.String(length=1000), nullable=False),
        sa.Column("related_entity_type", sa.String(length=50), nullable=True),
        sa.Column("related_entity_id", sa.String(length=40), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_notifications_user_created_at", "notifications", ["user_id", "created_at"])

    op.create_table(
        "admin_actions",
        sa.Column("action_id", sa.String(length=40), primary_key=True, nullable=False),
        sa.Column("admin_id", sa.String(length=40), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("action_type", sa.String(length=50), nullable=False),
        sa.Column("target_entity_type", sa.String(length=50), nullable=False),
        sa.Column("target_entity_id", sa.String(length=40), nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_admin_actions_admin_id", "admin_actions", ["admin_id"])


def downgrade() -> None:
    op.drop_index("ix_admin_actions_admin_id", table_name="admin_actions")
    op.drop_table("admin_actions")
    op.drop_index("ix_notifications_user_created_at", table_name="notifications")
    op.drop_table("notifications")
    for name in ("ix_reviews_host_id", "ix_reviews_reviewer_id", "ix_reviews_property_id"):
        op.drop_index(name, table_name="reviews")
    op.drop_table("reviews")
    for name in ("ix_messages_conversation_created_at", "ix_messages_sender_id", "ix_messages_conversation_id"):
        op.drop_index(name, table_name="messages")
    op.drop_table("messages")
    for name in ("ix_conversations_host_id", "ix_conversations_guest_id"):
        op.drop_index(name, table_name="conversations")
    op.drop_table("conversations")
    for name in (
        "ix_bookings_status",
        "ix_bookings_property_check_out",
        "ix_bookings_property_check_in",
        "ix_bookings_host_id",
        "ix_bookings_guest_id",
        "ix_bookings_property_id",
    ):
        op.drop_index(name, table_name="bookings")
    op.drop_table("bookings")
    op.drop_table("property_availability")
    op.drop_index("ix_property_photos_property_id", table_name="property_photos")
    op.drop_table("property_photos")
    for name in ("ix_properties_is_active", "ix_properties_city", "ix_properties_host_id"):
        op.drop_index(name, table_name="properties")
    op.drop_table("properties")
    op.drop_index("ix_users_role", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
