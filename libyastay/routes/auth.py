from __future__ import annotations

import logging
import os
import time
from typing import Optional

import jwt
from fastapi import APIRouter, Depends, Header, status
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, schemas
from ..errors import ApiError, Conflict, Forbidden, Unauthorized
from ..rate_limit import rate_limit

router = APIRouter()
logger = logging.getLogger("libyastay.auth")

# Security primitives
JWT_SECRET: str = os.getenv("LIBYASTAY_JWT_SECRET", "dev-secret-change-me")
JWT_ALG: str = "HS256"
JWT_TTL_SECONDS: int = int(os.getenv("JWT_TTL_SECONDS", str(60 * 60 * 24 * 7)))  # 7 days
# Use bcrypt_sha256 to avoid bcrypt's 72-byte password limit and handle unicode safely.
pwd_context = CryptContext(schemes=["bcrypt_sha256"], deprecated="auto")


# ----------------
# Helpers
# ----------------
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_access_token(*, user: models.User) -> str:
    now = int(time.time())
    payload = {
        "sub": user.user_id,
        "email": user.email,
        "role": user.role,
        "iat": now,
        "exp": now + JWT_TTL_SECONDS,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except jwt.ExpiredSignatureError as exc:
        raise Unauthorized("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise Unauthorized("Invalid token") from exc


def resolve_user(db: Session, token: str) -> models.User:
    """Map a bearer token to its user or raise 401 AUTH_TOKEN_INVALID."""
    payload = decode_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("Invalid token payload")
    user = db.get(models.User, str(user_id))
    if not user:
        raise Unauthorized("User not found")
    return user


# ----------------
# Dependencies
# ----------------
def bearer_token_from_auth_header(authorization: Optional[str]) -> str:
    if not authorization:
        raise Unauthorized("Access token required", "AUTH_TOKEN_MISSING")
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise Unauthorized("Invalid Authorization header")
    return parts[1].strip()


def get_current_user(
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> models.User:
    token = bearer_token_from_auth_header(authorization)
    return resolve_user(db, token)


def require_guest(user: models.User = Depends(get_current_user)) -> models.User:
    if user.role != "guest":
        raise Forbidden("Guest role required", "INSUFFICIENT_PERMISSIONS")
    return user


def require_host(user: models.User = Depends(get_current_user)) -> models.User:
    if user.role not in ("host", "admin"):
        raise Forbidden("Host role required", "INSUFFICIENT_PERMISSIONS")
    return user


def require_admin(user: models.User = Depends(get_current_user)) -> models.User:
    if user.role != "admin":
        raise Forbidden("Admin role required", "INSUFFICIENT_PERMISSIONS")
    return user


# ----------------
# Routes
# ----------------
def _auth_response(user: models.User) -> schemas.AuthResponse:
    return schemas.AuthResponse(
        user=schemas.UserRead.model_validate(user),
        token=create_access_token(user=user),
    )


@router.post(
    "/auth/register",
    response_model=schemas.AuthResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("signup"))],
)
def register(payload: schemas.RegisterRequest, db: Session = Depends(get_db)) -> schemas.AuthResponse:
    # Email is normalized by the schema; phone numbers are unique too
    existing = (
        db.query(models.User)
        .filter((models.User.email == payload.email) | (models.User.phone_number == payload.phone_number))
        .first()
    )
    if existing:
        raise Conflict("User with this email or phone number already exists", "USER_ALREADY_EXISTS")

    user = models.User(
        email=payload.email,
        phone_number=payload.phone_number,
        password_hash=hash_password(payload.password),
        name=payload.name,
        role=payload.role,
        profile_picture_url=payload.profile_picture_url,
        bio=payload.bio,
        emergency_contact_name=payload.emergency_contact_name,
        emergency_contact_phone=payload.emergency_contact_phone,
        is_verified=False,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("User with this email or phone number already exists", "USER_ALREADY_EXISTS") from exc
    db.refresh(user)

    logger.info("auth.registered", extra={"user_id": user.user_id, "role": user.role})
    return _auth_response(user)


@router.post(
    "/auth/login",
    response_model=schemas.AuthResponse,
    dependencies=[Depends(rate_limit("login"))],
)
def login(payload: schemas.LoginRequest, db: Session = Depends(get_db)) -> schemas.AuthResponse:
    user = db.query(models.User).filter(models.User.email == payload.email).first()
    if user is None:
        # Keep timing comparable to a real password check
        pwd_context.dummy_verify()
        raise ApiError(status.HTTP_400_BAD_REQUEST, "Invalid email or password", "INVALID_CREDENTIALS")
    if not verify_password(payload.password, user.password_hash):
        logger.info("auth.login_failed", extra={"user_id": user.user_id})
        raise ApiError(status.HTTP_400_BAD_REQUEST, "Invalid email or password", "INVALID_CREDENTIALS")

    logger.info("auth.login", extra={"user_id": user.user_id})
    return _auth_response(user)


@router.post("/auth/logout")
def logout(user: models.User = Depends(get_current_user)) -> dict:
    # Tokens are stateless; the client discards its copy
    logger.info("auth.logout", extra={"user_id": user.user_id})
    return {"message": "Logged out successfully"}


@router.get("/auth/verify", response_model=schemas.VerifyResponse)
def verify(user: models.User = Depends(get_current_user)) -> schemas.VerifyResponse:
    return schemas.VerifyResponse(user=schemas.UserRead.model_validate(user))
