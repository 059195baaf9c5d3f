from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, schemas
from ..services.admin import list_actions
from .auth import require_admin

router = APIRouter()


@router.get("/admin/actions", response_model=List[schemas.AdminActionRead])
def list_admin_actions(
    action_type: Optional[str] = Query(None, max_length=50),
    target_entity_type: Optional[str] = Query(None, max_length=50),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _: models.User = Depends(require_admin),
) -> List[models.AdminAction]:
    """Audit trail of admin interventions, newest first."""
    items, _total = list_actions(db, action_type, target_entity_type, limit, offset)
    return items
