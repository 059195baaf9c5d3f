# Guest reviews of completed stays. At most one review per booking.
import logging
from typing import List, Literal, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import Forbidden, ValidationFailed
from .bookings import get_booking
from .notifications import create_notification, deliver, publish_event

logger = logging.getLogger("libyastay.reviews")

ReviewSort = Literal["newest", "oldest", "rating_high_to_low", "rating_low_to_high"]

_ORDERING = {
    "newest": (models.Review.created_at.desc(),),
    "oldest": (models.Review.created_at.asc(),),
    "rating_high_to_low": (models.Review.overall_rating.desc(), models.Review.created_at.desc()),
    "rating_low_to_high": (models.Review.overall_rating.asc(), models.Review.created_at.desc()),
}


def _already_reviewed() -> ValidationFailed:
    return ValidationFailed("A review already exists for this booking", "REVIEW_ALREADY_EXISTS")


def create_review(
    db: Session, actor: models.User, booking_id: str, payload: schemas.ReviewCreate
) -> models.Review:
    booking = get_booking(db, booking_id)
    if actor.user_id != booking.guest_id:
        raise Forbidden("Only the guest of this booking can review it")
    if booking.status != "completed":
        raise ValidationFailed("Reviews can only be left for completed bookings", "BOOKING_NOT_COMPLETED")
    exists = db.query(models.Review.review_id).filter(models.Review.booking_id == booking.booking_id).first()
    if exists is not None:
        raise _already_reviewed()

    try:
        review = models.Review(
            booking_id=booking.booking_id,
            property_id=booking.property_id,
            reviewer_id=actor.user_id,
            host_id=booking.host_id,
            **payload.model_dump(),
        )
        db.add(review)
        db.flush()
        notif = create_notification(
            db,
            booking.host_id,
            "review_received",
            actor_name=actor.name,
            related_entity_type="review",
            related_entity_id=review.review_id,
        )
        db.commit()
    except IntegrityError:
        # Lost a race against a concurrent review of the same booking
        db.rollback()
        raise _already_reviewed()
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(review)
    db.refresh(notif)
    logger.info("review.created", extra={"review_id": review.review_id, "booking_id": booking.booking_id})
    deliver(notif)
    publish_event(
        [booking.guest_id, booking.host_id],
        "review/created",
        schemas.ReviewRead.model_validate(review).model_dump(mode="json"),
    )
    return review


def list_reviews(
    db: Session,
    *,
    property_id: Optional[str] = None,
    reviewer_id: Optional[str] = None,
    host_id: Optional[str] = None,
    sort_by: ReviewSort = "newest",
    limit: int = 10,
    offset: int = 0,
) -> Tuple[List[models.Review], int]:
    q = db.query(models.Review)
    if property_id:
        q = q.filter(models.Review.property_id == property_id)
    if reviewer_id:
        q = q.filter(models.Review.reviewer_id == reviewer_id)
    if host_id:
        q = q.filter(models.Review.host_id == host_id)
    total = q.count()
    items = q.order_by(*_ORDERING[sort_by]).offset(offset).limit(limit).all()
    return items, total


def average_rating(db: Session, property_id: str) -> Optional[float]:
    avg = (
        db.query(func.avg(models.Review.overall_rating))
        .filter(models.Review.property_id == property_id)
        .scalar()
    )
    return round(float(avg), 2) if avg is not None else None
