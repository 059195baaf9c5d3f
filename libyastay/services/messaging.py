# Booking conversations and their messages.
# Only the guest and host of a conversation may post; admins can read.
import logging
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..access import ensure_party_or_admin
from ..errors import Forbidden, NotFound, ValidationFailed
from ..models import utcnow
from ..realtime import conversation_channel, publish, subscribe_user
from .bookings import get_booking
from .notifications import publish_event

logger = logging.getLogger("libyastay.messaging")


def _is_party(actor: models.User, guest_id: str, host_id: str) -> bool:
    return actor.user_id in (guest_id, host_id)


def _conversation_for_booking(db: Session, booking_id: str) -> Optional[models.Conversation]:
    return db.query(models.Conversation).filter(models.Conversation.booking_id == booking_id).first()


def get_or_create_conversation(
    db: Session, actor: models.User, booking_id: str
) -> Tuple[models.Conversation, bool]:
    """Return ``(conversation, created)`` for the booking's single conversation."""
    booking = get_booking(db, booking_id)
    if not _is_party(actor, booking.guest_id, booking.host_id):
        raise Forbidden("Only the guest or host of this booking can open its conversation")

    existing = _conversation_for_booking(db, booking_id)
    if existing is not None:
        return existing, False

    try:
        conv = models.Conversation(booking_id=booking.booking_id, guest_id=booking.guest_id, host_id=booking.host_id)
        db.add(conv)
        db.commit()
    except IntegrityError:
        # Created concurrently; unique booking_id guarantees there is exactly one
        db.rollback()
        return _conversation_for_booking(db, booking_id), False
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(conv)
    channel = conversation_channel(conv.conversation_id)
    for user_id in (conv.guest_id, conv.host_id):
        subscribe_user(user_id, channel)
    publish_event(
        [conv.guest_id, conv.host_id],
        "conversation/created",
        schemas.ConversationRead.model_validate(conv).model_dump(mode="json"),
    )
    return conv, True


def list_conversations(
    db: Session, actor: models.User, limit: int, offset: int
) -> List[models.Conversation]:
    """Conversations the actor takes part in, most recent activity first."""
    q = db.query(models.Conversation).filter(
        or_(models.Conversation.guest_id == actor.user_id, models.Conversation.host_id == actor.user_id)
    )
    return q.order_by(models.Conversation.updated_at.desc()).offset(offset).limit(limit).all()


def conversation_ids_for(db: Session, user_id: str) -> List[str]:
    rows = (
        db.query(models.Conversation.conversation_id)
        .filter(or_(models.Conversation.guest_id == user_id, models.Conversation.host_id == user_id))
        .all()
    )
    return [r[0] for r in rows]


def get_conversation(db: Session, actor: models.User, conversation_id: str) -> models.Conversation:
    conv = db.get(models.Conversation, conversation_id)
    if not conv:
        raise NotFound("Conversation not found", "CONVERSATION_NOT_FOUND")
    ensure_party_or_admin(actor, conv.guest_id, conv.host_id, "Cannot access other users' conversations")
    return conv


def list_messages(
    db: Session, actor: models.User, conversation_id: str, limit: int, offset: int
) -> List[models.Message]:
    conv = get_conversation(db, actor, conversation_id)
    return (
        db.query(models.Message)
        .filter(models.Message.conversation_id == conv.conversation_id)
        .order_by(models.Message.created_at.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def send_message(db: Session, actor: models.User, conversation_id: str, content: str) -> models.Message:
    conv = db.get(models.Conversation, conversation_id)
    if not conv:
        raise NotFound("Conversation not found", "CONVERSATION_NOT_FOUND")
    if not _is_party(actor, conv.guest_id, conv.host_id):
        raise Forbidden("Cannot send messages in other users' conversations")

    try:
        msg = models.Message(conversation_id=conv.conversation_id, sender_id=actor.user_id, content=content)
        db.add(msg)
        conv.updated_at = utcnow()
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(msg)
    logger.info(
        "message.created",
        extra={"conversation_id": conv.conversation_id, "message_id": msg.message_id, "sender_id": actor.user_id},
    )
    _publish_message("message/created", msg)
    return msg


def update_message(
    db: Session, actor: models.User, message_id: str, patch: schemas.MessagePatch
) -> models.Message:
    msg = db.get(models.Message, message_id)
    if not msg:
        raise NotFound("Message not found", "MESSAGE_NOT_FOUND")
    conv = db.get(models.Conversation, msg.conversation_id)
    ensure_party_or_admin(actor, conv.guest_id, conv.host_id, "Cannot update messages in other users' conversations")

    changes = patch.changes()
    if not changes:
        raise ValidationFailed("No fields to update", "NO_UPDATE_FIELDS")
    if "content" in changes and actor.user_id != msg.sender_id:
        raise Forbidden("Only the sender can edit a message")

    try:
        for field, value in changes.items():
            setattr(msg, field, value)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(msg)
    _publish_message("message/updated", msg)
    return msg


def _publish_message(event_type: str, msg: models.Message) -> None:
    try:
        publish(
            conversation_channel(msg.conversation_id),
            event_type,
            schemas.MessageRead.model_validate(msg).model_dump(mode="json"),
        )
    except Exception:
        logger.exception("realtime.publish_failed", extra={"event_type": event_type, "message_id": msg.message_id})