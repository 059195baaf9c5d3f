# Ownership and role predicates shared by routes and services.
# Authorization is always "actor is a referenced party, or an admin".
from typing import Optional

from . import models
from .errors import Forbidden


def is_admin(actor: models.User) -> bool:
    return actor.role == "admin"


def is_owner_or_admin(actor: models.User, owner_id: Optional[str]) -> bool:
    return is_admin(actor) or (owner_id is not None and actor.user_id == owner_id)


def is_party_or_admin(actor: models.User, guest_id: str, host_id: str) -> bool:
    return is_admin(actor) or actor.user_id in (guest_id, host_id)


def ensure_owner_or_admin(actor: models.User, owner_id: Optional[str], message: str = "Access denied") -> None:
    if not is_owner_or_admin(actor, owner_id):
        raise Forbidden(message)


def ensure_party_or_admin(actor: models.User, guest_id: str, host_id: str, message: str = "Access denied") -> None:
    if not is_party_or_admin(actor, guest_id, host_id):
        raise Forbidden(message)
