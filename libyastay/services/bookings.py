# Booking lifecycle: creation with its conversation and host notification, and the
# status state machine with explicit per-transition authority.
#
#   pending -> confirmed -> completed
#      |          └──────> cancelled
#      ├──> declined
#      └──> cancelled
#
# Every multi-row write commits in one transaction; live events go out after commit.
import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, FrozenSet, List, Literal, Optional, Set, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..access import ensure_party_or_admin, is_admin
from ..errors import Conflict, Forbidden, NotFound, ValidationFailed
from ..realtime import conversation_channel, subscribe_user
from .admin import record_override
from .availability import blocked_dates, has_confirmed_overlap, quote_stay
from .notifications import create_notification, deliver_all, publish_event

logger = logging.getLogger("libyastay.bookings")

EDITABLE_STATUSES = frozenset({"pending", "confirmed"})

BookingSort = Literal["check_in", "check_out", "created_at", "total_price"]
SortOrder = Literal["asc", "desc"]

_SORT_COLUMNS = {
    "check_in": models.Booking.check_in,
    "check_out": models.Booking.check_out,
    "created_at": models.Booking.created_at,
    "total_price": models.Booking.total_cents,
}


@dataclass(frozen=True)
class Transition:
    """An allowed status edge: which capacities may take it and what it notifies."""
    allowed: FrozenSet[str]
    notification_type: str


TRANSITIONS: Dict[Tuple[str, str], Transition] = {
    ("pending", "confirmed"): Transition(frozenset({"host", "admin"}), "booking_confirmed"),
    ("pending", "declined"): Transition(frozenset({"host", "admin"}), "booking_declined"),
    ("pending", "cancelled"): Transition(frozenset({"guest", "host", "admin"}), "booking_cancelled"),
    ("confirmed", "cancelled"): Transition(frozenset({"guest", "host", "admin"}), "booking_cancelled"),
    ("confirmed", "completed"): Transition(frozenset({"host", "admin"}), "booking_completed"),
}


def capacities(actor: models.User, booking: models.Booking) -> Set[str]:
    """The roles ``actor`` holds with respect to this booking."""
    held = set()
    if actor.user_id == booking.guest_id:
        held.add("guest")
    if actor.user_id == booking.host_id:
        held.add("host")
    if is_admin(actor):
        held.add("admin")
    return held


def check_transition(actor: models.User, booking: models.Booking, new_status: str) -> Transition:
    """
    Return the transition for ``booking.status -> new_status`` or raise.

    Undefined edges (self-transitions included) raise 400 INVALID_STATUS_TRANSITION;
    a defined edge the actor has no authority for raises 403.
    """
    transition = TRANSITIONS.get((booking.status, new_status))
    if transition is None:
        raise ValidationFailed(
            f"Cannot change booking status from {booking.status} to {new_status}",
            "INVALID_STATUS_TRANSITION",
            details={"from": booking.status, "to": new_status},
        )
    if not capacities(actor, booking) & transition.allowed:
        raise Forbidden(f"Not allowed to mark this booking as {new_status}")
    return transition


def notification_recipients(actor: models.User, booking: models.Booking, new_status: str) -> List[str]:
    if new_status != "cancelled":
        return [booking.guest_id]
    held = capacities(actor, booking)
    if "guest" in held:
        return [booking.host_id]
    if "host" in held:
        return [booking.guest_id]
    # Admin acting on someone else's booking: both parties hear about it
    return [booking.guest_id, booking.host_id]


def get_booking(db: Session, booking_id: str) -> models.Booking:
    booking = db.get(models.Booking, booking_id)
    if not booking:
        raise NotFound("Booking not found", "BOOKING_NOT_FOUND")
    return booking


def get_booking_for(db: Session, actor: models.User, booking_id: str) -> models.Booking:
    booking = get_booking(db, booking_id)
    ensure_party_or_admin(actor, booking.guest_id, booking.host_id, "Cannot access other users' bookings")
    return booking


def ensure_dates_still_free(db: Session, booking: models.Booking) -> None:
    """
    Re-check the stay before confirming it: pending requests may overlap each other,
    and the host may have blocked dates since the request came in.
    """
    # Serializes concurrent confirmations for one property on server databases
    db.query(models.Property).filter(models.Property.property_id == booking.property_id).with_for_update().first()
    blocked = blocked_dates(db, booking.property_id, booking.check_in, booking.check_out)
    if blocked:
        raise Conflict("Selected dates are not available", "DATES_UNAVAILABLE", details={"dates": blocked})
    if has_confirmed_overlap(
        db, booking.property_id, booking.check_in, booking.check_out, exclude_booking_id=booking.booking_id
    ):
        raise Conflict("Dates overlap with an existing booking", "DATES_UNAVAILABLE")


def _booking_payload(booking: models.Booking) -> dict:
    return schemas.BookingRead.model_validate(booking).model_dump(mode="json")


def create_booking(db: Session, guest: models.User, payload: schemas.BookingCreate) -> models.Booking:
    """``guest`` must already hold the guest role; the route enforces it."""
    prop = db.get(models.Property, payload.property_id)
    if not prop:
        raise NotFound("Property not found", "PROPERTY_NOT_FOUND")
    if not prop.is_active:
        raise ValidationFailed("Property is not accepting bookings", "PROPERTY_INACTIVE")
    if prop.host_id == guest.user_id:
        raise ValidationFailed("You cannot book your own property", "CANNOT_BOOK_OWN_PROPERTY")
    if payload.check_out <= payload.check_in:
        raise ValidationFailed("check_out must be after check_in")
    if payload.guest_count > prop.guest_capacity:
        raise ValidationFailed(
            f"Property accommodates at most {prop.guest_capacity} guests",
            "GUEST_CAPACITY_EXCEEDED",
            details={"guest_capacity": prop.guest_capacity, "guest_count": payload.guest_count},
        )

    blocked = blocked_dates(db, prop.property_id, payload.check_in, payload.check_out)
    if blocked:
        raise Conflict("Selected dates are not available", "DATES_UNAVAILABLE", details={"dates": blocked})
    if has_confirmed_overlap(db, prop.property_id, payload.check_in, payload.check_out):
        raise Conflict("Dates overlap with an existing booking", "DATES_UNAVAILABLE")

    quote = quote_stay(db, prop, payload.check_in, payload.check_out)

    # booking + conversation + host notification: one transaction
    try:
        booking = models.Booking(
            property_id=prop.property_id,
            guest_id=guest.user_id,
            host_id=prop.host_id,
            check_in=payload.check_in,
            check_out=payload.check_out,
            guest_count=payload.guest_count,
            total_cents=quote.total_cents,
            service_fee_cents=quote.service_fee_cents,
            currency=quote.currency,
            special_requests=payload.special_requests,
            status="pending",
        )
        db.add(booking)
        db.flush()
        conversation = models.Conversation(
            booking_id=booking.booking_id,
            guest_id=booking.guest_id,
            host_id=booking.host_id,
        )
        db.add(conversation)
        notif = create_notification(
            db,
            booking.host_id,
            "booking_request",
            actor_name=guest.name,
            related_entity_type="booking",
            related_entity_id=booking.booking_id,
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("booking.create_failed", extra={"property_id": prop.property_id, "guest_id": guest.user_id})
        raise

    db.refresh(booking)
    db.refresh(conversation)
    db.refresh(notif)
    logger.info(
        "booking.created",
        extra={"booking_id": booking.booking_id, "property_id": prop.property_id, "guest_id": guest.user_id},
    )

    channel = conversation_channel(conversation.conversation_id)
    for user_id in (booking.guest_id, booking.host_id):
        subscribe_user(user_id, channel)
    deliver_all([notif])
    parties = [booking.guest_id, booking.host_id]
    publish_event(parties, "booking/created", _booking_payload(booking))
    publish_event(
        parties,
        "conversation/created",
        schemas.ConversationRead.model_validate(conversation).model_dump(mode="json"),
    )
    return booking


def update_booking(
    db: Session, actor: models.User, booking_id: str, patch: schemas.BookingPatch
) -> models.Booking:
    booking = get_booking_for(db, actor, booking_id)
    changes = patch.changes()
    if not changes:
        raise ValidationFailed("No fields to update", "NO_UPDATE_FIELDS")

    if "special_requests" in changes:
        if not ({"guest", "admin"} & capacities(actor, booking)):
            raise Forbidden("Only the guest can change special requests")
        if booking.status not in EDITABLE_STATUSES:
            raise ValidationFailed(
                f"Special requests cannot be changed on a {booking.status} booking",
                "BOOKING_NOT_EDITABLE",
            )

    transition: Optional[Transition] = None
    old_status = booking.status
    new_status = changes.get("status")
    if new_status is not None:
        transition = check_transition(actor, booking, new_status)
    if new_status == "confirmed":
        ensure_dates_still_free(db, booking)

    notifications: List[models.Notification] = []
    try:
        if "special_requests" in changes:
            booking.special_requests = changes["special_requests"]
        if transition is not None:
            booking.status = new_status
            for user_id in notification_recipients(actor, booking, new_status):
                notifications.append(
                    create_notification(
                        db,
                        user_id,
                        transition.notification_type,
                        actor_name=actor.name,
                        related_entity_type="booking",
                        related_entity_id=booking.booking_id,
                    )
                )
        record_override(
            db,
            actor,
            (booking.guest_id, booking.host_id),
            "booking_update",
            "booking",
            booking.booking_id,
            {"from_status": old_status, **changes},
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(booking)
    for notif in notifications:
        db.refresh(notif)
    logger.info(
        "booking.updated",
        extra={"booking_id": booking.booking_id, "actor_id": actor.user_id, "from": old_status, "to": booking.status},
    )

    deliver_all(notifications)
    parties = [booking.guest_id, booking.host_id]
    data = _booking_payload(booking)
    if transition is not None:
        publish_event(parties, f"booking/{booking.status}", data)
    publish_event(parties, "booking/updated", data)
    return booking


def _visible_bookings(db: Session, user_id: str, role: Optional[str]):
    q = db.query(models.Booking)
    if role == "guest":
        return q.filter(models.Booking.guest_id == user_id)
    if role == "host":
        return q.filter(models.Booking.host_id == user_id)
    return q.filter(or_(models.Booking.guest_id == user_id, models.Booking.host_id == user_id))


def list_bookings(
    db: Session,
    actor: models.User,
    *,
    property_id: Optional[str] = None,
    status: Optional[str] = None,
    role: Optional[str] = None,
    user_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    sort_by: BookingSort = "created_at",
    sort_order: SortOrder = "desc",
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[models.Booking], int]:
    """
    Bookings visible to ``actor``: their own as guest or host, or everything for admins.

    ``user_id`` narrows to one user's bookings; only that user or an admin may ask.
    ``role`` restricts to the guest or host side of the subject user.
    ``start_date``/``end_date`` bound check_in, both inclusive.
    """
    if user_id is not None and user_id != actor.user_id and not is_admin(actor):
        raise Forbidden("Cannot view other users' bookings")
    if start_date is not None and end_date is not None and end_date < start_date:
        raise ValidationFailed("end_date must not be before start_date")

    subject = user_id or actor.user_id
    if is_admin(actor) and user_id is None and role is None:
        q = db.query(models.Booking)
    else:
        q = _visible_bookings(db, subject, role)
    if property_id:
        q = q.filter(models.Booking.property_id == property_id)
    if status:
        q = q.filter(models.Booking.status == status)
    if start_date is not None:
        q = q.filter(models.Booking.check_in >= start_date)
    if end_date is not None:
        q = q.filter(models.Booking.check_in <= end_date)

    column = _SORT_COLUMNS[sort_by]
    total = q.count()
    items = (
        q.order_by(column.asc() if sort_order == "asc" else column.desc(), models.Booking.booking_id)
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total
