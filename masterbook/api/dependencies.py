# ============================================================================
# FILE: masterbook/api/dependencies.py
# Bearer token verification for client and dashboard routes
# Tokens are issued by the identity service; this side only checks them
# ============================================================================
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from masterbook.config.database import get_db
from masterbook.config.settings import settings
from masterbook.models.master import Master
from masterbook.models.user import User
from masterbook.services.master.master_service import MasterService

jwt_security = HTTPBearer(
    scheme_name="JWT Bearer Token",
    description="Access token issued by the identity service"
)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


# ============================================================================
# Tokens
# ============================================================================

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign an access token with the shared secret.

    Used by local tooling and tests; `data["sub"]` must be the user id.
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {**data, "exp": expire, "iat": now, "type": "access"}
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_access_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        raise _unauthorized(f"Could not validate credentials: {str(e)}")

    if payload.get("type") != "access":
        raise _unauthorized("Invalid token type")
    return payload


# ============================================================================
# Dependencies
# ============================================================================

def get_current_user(
        credentials: HTTPAuthorizationCredentials = Depends(jwt_security),
        db: Session = Depends(get_db)
) -> User:
    """Client or master behind the bearer token; 401 when it does not resolve to a user"""
    payload = verify_access_token(credentials.credentials)

    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError:
        raise _unauthorized("Invalid user ID in token")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise _unauthorized("User not found")
    return user


def get_current_master(
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db)
) -> Master:
    """Dashboard routes act on the master profile owned by the current user"""
    master = MasterService.get_for_user(db, current_user.id)
    if master is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Master profile not set up"
        )
    return master
