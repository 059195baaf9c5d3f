# Notification dispatcher: persist notification rows and push them to the
# addressed user's live sessions. Delivery is best-effort and at-most-once; the
# row is the durable record when nobody is connected.
import logging
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..access import ensure_owner_or_admin
from ..errors import NotFound
from ..realtime import publish, publish_to_users, user_channel

logger = logging.getLogger("libyastay.notifications")

# type -> (title, message template)
TEMPLATES = {
    "booking_request": ("New Booking Request", "You have a new booking request from {actor_name}"),
    "booking_confirmed": ("Booking Confirmed", "Your booking has been confirmed by the host"),
    "booking_declined": ("Booking Declined", "Your booking request has been declined"),
    "booking_cancelled": ("Booking Cancelled", "A booking has been cancelled"),
    "booking_completed": ("Stay Completed", "Your stay is complete. You can now leave a review"),
    "review_received": ("New Review", "You received a new review from {actor_name}"),
}


def create_notification(
    db: Session,
    user_id: str,
    type_: str,
    *,
    actor_name: str = "",
    related_entity_type: Optional[str] = None,
    related_entity_id: Optional[str] = None,
    title: Optional[str] = None,
    message: Optional[str] = None,
) -> models.Notification:
    """
    Stage a notification row in the caller's transaction.

    Title and message default to the template registered for ``type_``; the caller
    commits and then hands the row to ``deliver``.
    """
    default_title, template = TEMPLATES.get(type_, (type_, ""))
    notif = models.Notification(
        user_id=user_id,
        type=type_,
        title=title or default_title,
        message=message or template.format(actor_name=actor_name),
        related_entity_type=related_entity_type,
        related_entity_id=related_entity_id,
        is_read=False,
    )
    db.add(notif)
    return notif


def deliver(notification: models.Notification) -> None:
    """Push ``notification/created`` to the recipient. Never raises."""
    try:
        data = schemas.NotificationRead.model_validate(notification).model_dump(mode="json")
        publish(user_channel(notification.user_id), "notification/created", data)
    except Exception:
        logger.exception("notification.deliver_failed", extra={"notification_id": notification.notification_id})


def deliver_all(notifications: Iterable[models.Notification]) -> None:
    for notif in notifications:
        deliver(notif)


def create_and_deliver(db: Session, user_id: str, type_: str, **kwargs) -> models.Notification:
    notif = create_notification(db, user_id, type_, **kwargs)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(notif)
    deliver(notif)
    return notif


def publish_event(user_ids: Iterable[str], event_type: str, payload) -> None:
    """Addressed domain event (``booking/created`` etc.) to the involved users only. Never raises."""
    try:
        publish_to_users(user_ids, event_type, payload)
    except Exception:
        logger.exception("realtime.publish_failed", extra={"event_type": event_type})


# ----------------
# Queries and read-flag updates
# ----------------
def list_notifications(
    db: Session, user: models.User, is_read: Optional[bool], limit: int, offset: int
) -> Tuple[List[models.Notification], int]:
    q = db.query(models.Notification).filter(models.Notification.user_id == user.user_id)
    if is_read is not None:
        q = q.filter(models.Notification.is_read == is_read)
    total = q.count()
    items = (
        q.order_by(models.Notification.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total


def get_notification(db: Session, actor: models.User, notification_id: str) -> models.Notification:
    notif = db.get(models.Notification, notification_id)
    if not notif:
        raise NotFound("Notification not found", "NOTIFICATION_NOT_FOUND")
    ensure_owner_or_admin(actor, notif.user_id, "Cannot access other users' notifications")
    return notif


def set_read(db: Session, actor: models.User, notification_id: str, is_read: bool) -> models.Notification:
    notif = get_notification(db, actor, notification_id)
    notif.is_read = is_read
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(notif)
    publish_event(
        [notif.user_id],
        "notification/updated",
        schemas.NotificationRead.model_validate(notif).model_dump(mode="json"),
    )
    return notif


def mark_all_read(db: Session, user: models.User) -> int:
    try:
        updated = (
            db.query(models.Notification)
            .filter(models.Notification.user_id == user.user_id, models.Notification.is_read.is_(False))
            .update({models.Notification.is_read: True}, synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info("notification.read_all", extra={"user_id": user.user_id, "updated": updated})
    return updated
