# User profile endpoints: public profile, self/admin updates, and per-user listings,
# bookings and reviews.
from __future__ import annotations

import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, schemas
from ..access import ensure_owner_or_admin, is_admin
from ..errors import Conflict, Forbidden, NotFound, ValidationFailed
from ..rate_limit import rate_limit
from ..services import bookings as booking_service
from ..services import reviews as review_service
from ..services.admin import describe_changes, record_override
from .auth import get_current_user, hash_password

router = APIRouter()
logger = logging.getLogger("libyastay.users")

ADMIN_ONLY_FIELDS = frozenset({"role", "is_verified"})


def _get_user(db: Session, user_id: str) -> models.User:
    user = db.get(models.User, user_id)
    if not user:
        raise NotFound("User not found", "USER_NOT_FOUND")
    return user


@router.get("/users/{user_id}", response_model=schemas.UserRead)
def get_user(
    user_id: str,
    db: Session = Depends(get_db),
    _: models.User = Depends(get_current_user),
) -> models.User:
    return _get_user(db, user_id)


@router.patch(
    "/users/{user_id}",
    response_model=schemas.UserRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_user(
    user_id: str,
    payload: schemas.UserPatch,
    db: Session = Depends(get_db),
    actor: models.User = Depends(get_current_user),
) -> models.User:
    user = _get_user(db, user_id)
    ensure_owner_or_admin(actor, user.user_id, "Cannot update other users' profiles")

    changes = payload.changes()
    if not changes:
        raise ValidationFailed("No fields to update", "NO_UPDATE_FIELDS")
    if ADMIN_ONLY_FIELDS & changes.keys() and not is_admin(actor):
        raise Forbidden("Only admins can change role or verification status")

    for unique_field in ("email", "phone_number"):
        value = changes.get(unique_field)
        if value is None or value == getattr(user, unique_field):
            continue
        taken = (
            db.query(models.User.user_id)
            .filter(getattr(models.User, unique_field) == value, models.User.user_id != user.user_id)
            .first()
        )
        if taken:
            raise Conflict(f"A user with this {unique_field.replace('_', ' ')} already exists", "USER_ALREADY_EXISTS")

    try:
        for field, value in changes.items():
            if field == "password":
                user.password_hash = hash_password(value)
            else:
                setattr(user, field, value)
        record_override(db, actor, (user.user_id,), "user_update", "user", user.user_id, describe_changes(changes))
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("A user with this email or phone number already exists", "USER_ALREADY_EXISTS") from exc
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(user)

    logger.info("user.updated", extra={"user_id": user.user_id, "actor_id": actor.user_id, "fields": sorted(changes)})
    return user


@router.get("/users/{user_id}/listings", response_model=List[schemas.PropertyRead])
def list_user_listings(
    user_id: str,
    include_inactive: bool = Query(False),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    actor: models.User = Depends(get_current_user),
) -> List[models.Property]:
    _get_user(db, user_id)
    q = db.query(models.Property).filter(models.Property.host_id == user_id)
    # Inactive listings are only shown to their owner or an admin
    if not (include_inactive and (actor.user_id == user_id or is_admin(actor))):
        q = q.filter(models.Property.is_active.is_(True))
    return q.order_by(models.Property.created_at.desc()).offset(offset).limit(limit).all()


@router.get("/users/{user_id}/bookings", response_model=schemas.BookingListResponse)
def list_user_bookings(
    user_id: str,
    status_filter: Optional[schemas.BookingStatus] = Query(None, alias="status"),
    role: Optional[Literal["guest", "host"]] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    actor: models.User = Depends(get_current_user),
) -> schemas.BookingListResponse:
    _get_user(db, user_id)
    items, total = booking_service.list_bookings(
        db, actor, status=status_filter, role=role, user_id=user_id, limit=limit, offset=offset
    )
    return schemas.BookingListResponse(
        bookings=[schemas.BookingRead.model_validate(b) for b in items],
        total_count=total,
    )


@router.get("/users/{user_id}/reviews", response_model=schemas.ReviewListResponse)
def list_user_reviews(
    user_id: str,
    as_: Literal["reviewer", "host"] = Query("reviewer", alias="as"),
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _: models.User = Depends(get_current_user),
) -> schemas.ReviewListResponse:
    _get_user(db, user_id)
    filters = {"reviewer_id": user_id} if as_ == "reviewer" else {"host_id": user_id}
    items, total = review_service.list_reviews(db, limit=limit, offset=offset, **filters)
    return schemas.ReviewListResponse(
        reviews=[schemas.ReviewRead.model_validate(r) for r in items],
        total_count=total,
    )
