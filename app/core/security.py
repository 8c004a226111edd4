"""
Security utilities for authentication and authorization

Tokens are issued by the external auth service; this module only verifies
them and performs the role (capability) check before the registration core
is invoked.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Callable
from uuid import UUID
from jose import JWTError, jwt
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
import logging

from app.config import settings
from app.core.exceptions import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)

# OAuth2 scheme
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_PREFIX}/auth/login", auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller extracted from the access token"""
    id: UUID
    role: str = "attendee"


def create_access_token(
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a JWT access token
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire, "type": "access"})

    return jwt.encode(
        to_encode,
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM
    )


def decode_access_token(token: str) -> CurrentUser:
    """
    Verify a JWT access token and return the caller it identifies
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as e:
        logger.info(f"Rejected access token: {e}")
        raise AuthenticationError("Could not validate credentials")

    if payload.get("type") != "access":
        raise AuthenticationError("Invalid token type")

    subject = payload.get("sub")
    try:
        user_id = UUID(str(subject))
    except (TypeError, ValueError):
        raise AuthenticationError("Invalid token subject")

    return CurrentUser(id=user_id, role=payload.get("role", "attendee"))


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme)) -> CurrentUser:
    """
    Dependency resolving the authenticated caller
    """
    if not token:
        raise AuthenticationError("Not authenticated")
    return decode_access_token(token)


def require_roles(*roles: str) -> Callable:
    """
    Dependency factory enforcing that the caller holds one of ``roles``
    """
    allowed = set(roles)

    async def role_checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in allowed:
            logger.warning(f"User {current_user.id} with role {current_user.role} denied, requires {sorted(allowed)}")
            raise AuthorizationError(details={"required_roles": sorted(allowed)})
        return current_user

    return role_checker
