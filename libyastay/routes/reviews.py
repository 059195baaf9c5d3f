from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from .. import schemas
from ..services import reviews as review_service

router = APIRouter()


@router.get("/reviews", response_model=schemas.ReviewListResponse)
def list_reviews(
    property_id: Optional[str] = Query(None),
    reviewer_id: Optional[str] = Query(None),
    host_id: Optional[str] = Query(None),
    sort_by: review_service.ReviewSort = Query("newest"),
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> schemas.ReviewListResponse:
    items, total = review_service.list_reviews(
        db,
        property_id=property_id,
        reviewer_id=reviewer_id,
        host_id=host_id,
        sort_by=sort_by,
        limit=limit,
        offset=offset,
    )
    return schemas.ReviewListResponse(
        reviews=[schemas.ReviewRead.model_validate(r) for r in items],
        total_count=total,
    )
