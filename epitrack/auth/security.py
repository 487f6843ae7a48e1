import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..errors import AuthenticationError, AuthorizationError
from ..models.models import User, RevokedToken
from ..services.access import has_permission, SUPERVISOR_TIER, PRIVILEGED_ROLES


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        # Unknown or malformed hash format
        return False


def _create_token(sub: str, ttl_seconds: int, extra: Optional[dict] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: str, role: Optional[str] = None) -> str:
    return _create_token(user_id, settings.jwt_ttl_seconds, extra={"role": role} if role else None)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Your session has expired, please log in again", reason="token_expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Access token is invalid", reason="token_invalid")


def is_token_revoked(db: Session, jti: Optional[str]) -> bool:
    if not jti:
        return False
    return db.query(RevokedToken).filter(RevokedToken.jti == jti).first() is not None


def get_token_payload(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> dict:
    if creds is None or not creds.credentials:
        raise AuthenticationError("Authentication is required to access this resource", reason="token_missing")
    return decode_token(creds.credentials)


def get_current_user(
    payload: dict = Depends(get_token_payload),
    db: Session = Depends(get_db),
) -> User:
    try:
        user_uuid = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise AuthenticationError("Access token is invalid", reason="token_invalid")
    if is_token_revoked(db, payload.get("jti")):
        raise AuthenticationError("Access token has been revoked", reason="token_invalid")
    user = db.query(User).filter(User.id == user_uuid).first()
    if user is None:
        raise AuthenticationError("User not found", reason="token_invalid")
    if not user.is_active:
        raise AuthenticationError("Your account has been deactivated", reason="user_inactive")
    return user


def require_permissions(*required_permissions: str):
    """
    Require at least one of the specified permissions (OR logic).
    Admins pass through the wildcard in the capability matrix.
    """
    def _dep(user: User = Depends(get_current_user)):
        if not any(has_permission(user.role, perm) for perm in required_permissions):
            raise AuthorizationError("You do not have permission to access this resource")
        return user

    return _dep


def require_roles(*roles: str):
    def _dep(user: User = Depends(get_current_user)):
        if user.role not in roles:
            raise AuthorizationError("You do not have permission to access this resource")
        return user

    return _dep


# Supervisor and above (report endpoints, anomaly close)
require_supervisor = require_roles(*sorted(SUPERVISOR_TIER))
# Safety technician or admin (user management)
require_safety_technician = require_roles(*sorted(PRIVILEGED_ROLES))
