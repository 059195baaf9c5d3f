# Property listing endpoints.
# Anyone can search and read listings; hosts manage their own, admins manage all.
import logging
import os
from datetime import date
from typing import List, Literal, Optional, Union

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, schemas
from ..access import ensure_owner_or_admin
from ..errors import NotFound, ValidationFailed
from ..rate_limit import rate_limit
from ..services import availability as ledger
from ..services import reviews as review_service
from ..services.admin import record_override
from .auth import get_current_user, require_host

router = APIRouter()
logger = logging.getLogger("libyastay.properties")

DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "LYD")

SearchSort = Literal["price_low_to_high", "price_high_to_low", "newest"]

_SEARCH_ORDERING = {
    "price_low_to_high": (models.Property.base_price_cents.asc(), models.Property.created_at.desc()),
    "price_high_to_low": (models.Property.base_price_cents.desc(), models.Property.created_at.desc()),
    "newest": (models.Property.created_at.desc(),),
}


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _validate_range(check_in: Optional[date], check_out: Optional[date]) -> None:
    if (check_in is None) != (check_out is None):
        raise ValidationFailed("check_in and check_out must be provided together")
    if check_in is not None and check_out <= check_in:
        raise ValidationFailed("check_out must be after check_in")
    if check_in is not None and (check_out - check_in).days > schemas.MAX_STAY_NIGHTS:
        raise ValidationFailed(f"Stays are limited to {schemas.MAX_STAY_NIGHTS} nights")


def get_property_or_404(db: Session, property_id: str) -> models.Property:
    prop = db.get(models.Property, property_id)
    if not prop:
        raise NotFound("Property not found", "PROPERTY_NOT_FOUND")
    return prop


def _owned_property(db: Session, user: models.User, property_id: str) -> models.Property:
    prop = get_property_or_404(db, property_id)
    ensure_owner_or_admin(user, prop.host_id, "Cannot modify other users' properties")
    return prop


def _commit(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


# ----------------
# Search and CRUD
# ----------------
@router.get("/properties", response_model=schemas.PropertySearchResponse)
def search_properties(
    location: Optional[str] = Query(None, max_length=100),
    check_in: Optional[date] = Query(None),
    check_out: Optional[date] = Query(None),
    guests: Optional[int] = Query(None, ge=1),
    price_min: Optional[int] = Query(None, ge=0),
    price_max: Optional[int] = Query(None, ge=0),
    property_type: Optional[str] = Query(None, max_length=50),
    amenities: Optional[str] = Query(None, max_length=200),
    instant_book: Optional[bool] = Query(None),
    sort_by: SearchSort = Query("newest"),
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> schemas.PropertySearchResponse:
    """
    Search active listings.

    - location: case-insensitive substring of city or neighborhood
    - check_in/check_out: drop listings with a blocked date in [check_in, check_out)
    - price_min/price_max: bounds on the base nightly price in minor units
    - amenities: comma-separated terms, each must appear in the listing's amenities
    total_count is the size of the filtered set before paging.
    """
    _validate_range(check_in, check_out)
    if price_min is not None and price_max is not None and price_min > price_max:
        raise ValidationFailed("price_min cannot exceed price_max")

    q = db.query(models.Property).filter(models.Property.is_active.is_(True))
    if location and location.strip():
        pattern = _like_pattern(location.strip())
        q = q.filter(
            or_(
                models.Property.city.ilike(pattern, escape="\\"),
                models.Property.neighborhood.ilike(pattern, escape="\\"),
            )
        )
    if check_in is not None:
        q = q.filter(models.Property.property_id.not_in(ledger.blocked_property_ids(check_in, check_out)))
    if guests is not None:
        q = q.filter(models.Property.guest_capacity >= guests)
    if price_min is not None:
        q = q.filter(models.Property.base_price_cents >= price_min)
    if price_max is not None:
        q = q.filter(models.Property.base_price_cents <= price_max)
    if property_type:
        q = q.filter(models.Property.property_type == property_type)
    if amenities:
        for term in (t.strip() for t in amenities.split(",")):
            if term:
                q = q.filter(models.Property.amenities.ilike(_like_pattern(term), escape="\\"))
    if instant_book is not None:
        q = q.filter(models.Property.instant_book.is_(instant_book))

    total = q.count()
    items = q.order_by(*_SEARCH_ORDERING[sort_by]).offset(offset).limit(limit).all()
    return schemas.PropertySearchResponse(
        properties=[schemas.PropertyRead.model_validate(p) for p in items],
        total_count=total,
    )


@router.post(
    "/properties",
    response_model=schemas.PropertyRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_property(
    payload: schemas.PropertyCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_host),
) -> models.Property:
    """
    Create a listing owned by the authenticated host.

    Validation is handled by Pydantic; this endpoint assigns ownership and persists the record.
    """
    data = payload.model_dump()
    if "currency" not in payload.model_fields_set:
        data["currency"] = DEFAULT_CURRENCY
    obj = models.Property(host_id=user.user_id, **data)
    db.add(obj)
    _commit(db)
    db.refresh(obj)
    logger.info("property.created", extra={"property_id": obj.property_id, "host_id": user.user_id})
    return obj


@router.get("/properties/{property_id}", response_model=schemas.PropertyRead)
def get_property(property_id: str, db: Session = Depends(get_db)) -> models.Property:
    # Inactive listings stay addressable by id
    return get_property_or_404(db, property_id)


@router.patch(
    "/properties/{property_id}",
    response_model=schemas.PropertyRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_property(
    property_id: str,
    payload: schemas.PropertyPatch,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Property:
    prop = _owned_property(db, user, property_id)
    changes = payload.changes()
    if not changes:
        raise ValidationFailed("No fields to update", "NO_UPDATE_FIELDS")
    for field, value in changes.items():
        setattr(prop, field, value)
    record_override(db, user, (prop.host_id,), "property_update", "property", prop.property_id, changes)
    _commit(db)
    db.refresh(prop)
    logger.info("property.updated", extra={"property_id": prop.property_id, "actor_id": user.user_id})
    return prop


@router.delete(
    "/properties/{property_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(rate_limit("write"))],
)
def delete_property(
    property_id: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> Response:
    prop = _owned_property(db, user, property_id)
    prop.is_active = False
    record_override(db, user, (prop.host_id,), "property_deactivate", "property", prop.property_id)
    _commit(db)
    logger.info("property.deactivated", extra={"property_id": prop.property_id, "actor_id": user.user_id})
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ----------------
# Photos
# ----------------
def _get_photo(db: Session, property_id: str, photo_id: str) -> models.PropertyPhoto:
    photo = db.get(models.PropertyPhoto, photo_id)
    if not photo or photo.property_id != property_id:
        raise NotFound("Photo not found", "PHOTO_NOT_FOUND")
    return photo


@router.get("/properties/{property_id}/photos", response_model=List[schemas.PhotoRead])
def list_photos(property_id: str, db: Session = Depends(get_db)) -> List[models.PropertyPhoto]:
    get_property_or_404(db, property_id)
    return (
        db.query(models.PropertyPhoto)
        .filter(models.PropertyPhoto.property_id == property_id)
        .order_by(models.PropertyPhoto.display_order.asc(), models.PropertyPhoto.created_at.asc())
        .all()
    )


@router.post(
    "/properties/{property_id}/photos",
    response_model=schemas.PhotoRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def add_photo(
    property_id: str,
    payload: schemas.PhotoCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.PropertyPhoto:
    prop = _owned_property(db, user, property_id)
    photo = models.PropertyPhoto(property_id=prop.property_id, **payload.model_dump())
    db.add(photo)
    db.flush()
    record_override(db, user, (prop.host_id,), "photo_add", "photo", photo.photo_id, payload.model_dump())
    _commit(db)
    db.refresh(photo)
    return photo


@router.patch(
    "/properties/{property_id}/photos/{photo_id}",
    response_model=schemas.PhotoRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_photo(
    property_id: str,
    photo_id: str,
    payload: schemas.PhotoPatch,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.PropertyPhoto:
    prop = _owned_property(db, user, property_id)
    photo = _get_photo(db, property_id, photo_id)
    changes = payload.changes()
    if not changes:
        raise ValidationFailed("No fields to update", "NO_UPDATE_FIELDS")
    for field, value in changes.items():
        setattr(photo, field, value)
    record_override(db, user, (prop.host_id,), "photo_update", "photo", photo.photo_id, changes)
    _commit(db)
    db.refresh(photo)
    return photo


@router.delete(
    "/properties/{property_id}/photos/{photo_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(rate_limit("write"))],
)
def delete_photo(
    property_id: str,
    photo_id: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> Response:
    prop = _owned_property(db, user, property_id)
    photo = _get_photo(db, property_id, photo_id)
    db.delete(photo)
    record_override(db, user, (prop.host_id,), "photo_delete", "photo", photo_id)
    _commit(db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ----------------
# Availability ledger and pricing
# ----------------
@router.get("/properties/{property_id}/availability", response_model=List[schemas.AvailabilityRead])
def get_availability(
    property_id: str,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: Session = Depends(get_db),
) -> List[models.AvailabilityRecord]:
    get_property_or_404(db, property_id)
    if start_date is not None and end_date is not None and end_date < start_date:
        raise ValidationFailed("end_date cannot be before start_date")
    return ledger.query_availability(db, property_id, start_date, end_date)


@router.post(
    "/properties/{property_id}/availability",
    response_model=List[schemas.AvailabilityRead],
    dependencies=[Depends(rate_limit("write"))],
)
def set_availability(
    property_id: str,
    payload: Union[schemas.AvailabilityUpsert, List[schemas.AvailabilityUpsert]],
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> List[models.AvailabilityRecord]:
    """Upsert one ledger entry or a batch; each (property, date) keeps the last write."""
    prop = _owned_property(db, user, property_id)
    entries = payload if isinstance(payload, list) else [payload]
    if not entries:
        raise ValidationFailed("At least one availability entry is required", "NO_UPDATE_FIELDS")
    return ledger.save_availability(db, user, prop, entries)


@router.get("/properties/{property_id}/quote", response_model=schemas.StayQuote)
def quote(
    property_id: str,
    check_in: date = Query(...),
    check_out: date = Query(...),
    db: Session = Depends(get_db),
) -> schemas.StayQuote:
    _validate_range(check_in, check_out)
    prop = get_property_or_404(db, property_id)
    return ledger.quote_stay(db, prop, check_in, check_out)


@router.get("/properties/{property_id}/reviews", response_model=schemas.PropertyReviewsResponse)
def list_property_reviews(
    property_id: str,
    sort_by: review_service.ReviewSort = Query("newest"),
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> schemas.PropertyReviewsResponse:
    get_property_or_404(db, property_id)
    items, total = review_service.list_reviews(
        db, property_id=property_id, sort_by=sort_by, limit=limit, offset=offset
    )
    return schemas.PropertyReviewsResponse(
        reviews=[schemas.ReviewRead.model_validate(r) for r in items],
        total_count=total,
        average_rating=review_service.average_rating(db, property_id),
    )
