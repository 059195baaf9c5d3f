# Conversation and message endpoints (REST). Messages posted here are pushed to
# live sessions joined to the conversation channel.
from typing import List

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, schemas
from ..rate_limit import rate_limit
from ..services import messaging
from .auth import get_current_user

router = APIRouter()


@router.get("/conversations", response_model=List[schemas.ConversationRead])
def list_conversations(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> List[models.Conversation]:
    return messaging.list_conversations(db, user, limit, offset)


@router.post(
    "/conversations",
    response_model=schemas.ConversationRead,
    responses={201: {"model": schemas.ConversationRead}},
    dependencies=[Depends(rate_limit("write"))],
)
def open_conversation(
    payload: schemas.ConversationCreate,
    response: Response,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Conversation:
    """Return the booking's conversation, creating it (201) if it does not exist yet."""
    conv, created = messaging.get_or_create_conversation(db, user, payload.booking_id)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return conv


@router.get("/conversations/{conversation_id}", response_model=schemas.ConversationRead)
def get_conversation(
    conversation_id: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Conversation:
    return messaging.get_conversation(db, user, conversation_id)


@router.get("/conversations/{conversation_id}/messages", response_model=List[schemas.MessageRead])
def list_messages(
    conversation_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> List[models.Message]:
    """Messages in ascending created_at order."""
    return messaging.list_messages(db, user, conversation_id, limit, offset)


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=schemas.MessageRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def send_message(
    conversation_id: str,
    payload: schemas.MessageCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Message:
    return messaging.send_message(db, user, conversation_id, payload.content)


@router.patch(
    "/messages/{message_id}",
    response_model=schemas.MessageRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_message(
    message_id: str,
    payload: schemas.MessagePatch,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Message:
    return messaging.update_message(db, user, message_id, payload)
