# Admin audit trail. Rows are staged in the caller's transaction so the audit
# entry commits or rolls back together with the change it describes.
import json
import logging
from typing import Any, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from .. import models
from ..access import is_admin

logger = logging.getLogger("libyastay.admin")


def record_override(
    db: Session,
    actor: models.User,
    owner_ids: Iterable[Optional[str]],
    action_type: str,
    target_entity_type: str,
    target_entity_id: str,
    details: Optional[dict] = None,
) -> Optional[models.AdminAction]:
    """Stage an AdminAction when an admin acts on an entity owned by someone else."""
    if not is_admin(actor) or actor.user_id in set(owner_ids):
        return None
    action = models.AdminAction(
        admin_id=actor.user_id,
        action_type=action_type,
        target_entity_type=target_entity_type,
        target_entity_id=target_entity_id,
        details=json.dumps(details, default=str) if details is not None else None,
    )
    db.add(action)
    logger.info(
        "admin.action",
        extra={"admin_id": actor.user_id, "action_type": action_type, "target": target_entity_id},
    )
    return action


def list_actions(
    db: Session,
    action_type: Optional[str],
    target_entity_type: Optional[str],
    limit: int,
    offset: int,
) -> Tuple[List[models.AdminAction], int]:
    q = db.query(models.AdminAction)
    if action_type:
        q = q.filter(models.AdminAction.action_type == action_type)
    if target_entity_type:
        q = q.filter(models.AdminAction.target_entity_type == target_entity_type)
    total = q.count()
    items = q.order_by(models.AdminAction.created_at.desc()).offset(offset).limit(limit).all()
    return items, total


def describe_changes(changes: dict) -> Any:
    # Never copy secrets into the audit log
    return {k: v for k, v in changes.items() if k not in {"password", "password_hash"}}
