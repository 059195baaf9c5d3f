from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, schemas
from ..services import notifications as dispatcher
from .auth import get_current_user

router = APIRouter()


@router.get("/notifications", response_model=List[schemas.NotificationRead])
def list_notifications(
    is_read: Optional[bool] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> List[models.Notification]:
    """The caller's notifications, newest first."""
    items, _ = dispatcher.list_notifications(db, user, is_read, limit, offset)
    return items


@router.post("/notifications/read-all", response_model=schemas.MarkAllReadResponse)
def mark_all_read(
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> schemas.MarkAllReadResponse:
    return schemas.MarkAllReadResponse(updated=dispatcher.mark_all_read(db, user))


@router.get("/notifications/{notification_id}", response_model=schemas.NotificationRead)
def get_notification(
    notification_id: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Notification:
    return dispatcher.get_notification(db, user, notification_id)


@router.patch("/notifications/{notification_id}", response_model=schemas.NotificationRead)
def update_notification(
    notification_id: str,
    payload: schemas.NotificationPatch,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Notification:
    return dispatcher.set_read(db, user, notification_id, payload.is_read)
