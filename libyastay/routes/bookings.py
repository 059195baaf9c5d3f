# Booking endpoints: create, list, read, patch (status transitions and special
# requests) and review submission. Lifecycle rules live in services/bookings.py.
from __future__ import annotations

from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, schemas
from ..rate_limit import rate_limit
from ..services import bookings as booking_service
from ..services import reviews as review_service
from .auth import get_current_user, require_guest

router = APIRouter()


@router.post(
    "/bookings",
    response_model=schemas.BookingRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_booking(
    payload: schemas.BookingCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_guest),
) -> models.Booking:
    """
    Request a stay. Totals are priced server-side from the availability ledger;
    any client-sent amounts are ignored.
    """
    return booking_service.create_booking(db, user, payload)


@router.get("/bookings", response_model=schemas.BookingListResponse)
def list_bookings(
    property_id: Optional[str] = Query(None),
    status_filter: Optional[schemas.BookingStatus] = Query(None, alias="status"),
    role: Optional[Literal["guest", "host"]] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    sort_by: booking_service.BookingSort = Query("created_at"),
    sort_order: booking_service.SortOrder = Query("desc"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> schemas.BookingListResponse:
    items, total = booking_service.list_bookings(
        db,
        user,
        property_id=property_id,
        status=status_filter,
        role=role,
        start_date=start_date,
        end_date=end_date,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=offset,
    )
    return schemas.BookingListResponse(
        bookings=[schemas.BookingRead.model_validate(b) for b in items],
        total_count=total,
    )


@router.get("/bookings/{booking_id}", response_model=schemas.BookingRead)
def get_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Booking:
    return booking_service.get_booking_for(db, user, booking_id)


@router.patch(
    "/bookings/{booking_id}",
    response_model=schemas.BookingRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_booking(
    booking_id: str,
    payload: schemas.BookingPatch,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Booking:
    return booking_service.update_booking(db, user, booking_id, payload)


@router.post(
    "/bookings/{booking_id}/reviews",
    response_model=schemas.ReviewRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_review(
    booking_id: str,
    payload: schemas.ReviewCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Review:
    return review_service.create_review(db, user, booking_id, payload)
