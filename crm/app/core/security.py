"""
Deal Pipeline CRM Security
Bearer JWT verification against the hosted auth platform
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from uuid import UUID
from jose import JWTError, jwt
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import structlog

from .config import settings

logger = structlog.get_logger()

security = HTTPBearer(auto_error=False)

ADMIN_ROLE = "admin"
MEMBER_ROLE = "member"


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller, passed explicitly into services"""
    id: UUID
    email: Optional[str] = None
    role: str = MEMBER_ROLE

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid authentication credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token shaped like the auth platform's tokens"""
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode.update({"exp": expire})
    if settings.jwt_audience:
        to_encode.setdefault("aud", settings.jwt_audience)

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def verify_token(token: str) -> Dict[str, Any]:
    """Verify and decode JWT token"""
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            audience=settings.jwt_audience,
        )
    except JWTError as e:
        logger.warning("JWT verification failed", error=str(e))
        raise _credentials_exception()

    if payload.get("sub") is None:
        raise _credentials_exception()

    return payload


def user_from_claims(payload: Dict[str, Any]) -> CurrentUser:
    """Build the caller context from verified token claims"""
    try:
        user_id = UUID(str(payload["sub"]))
    except ValueError:
        logger.warning("Token subject is not a user id", sub=payload.get("sub"))
        raise _credentials_exception()

    metadata = payload.get("user_metadata") or {}
    role = metadata.get("role") or MEMBER_ROLE

    return CurrentUser(id=user_id, email=payload.get("email"), role=role)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> CurrentUser:
    """Get current authenticated user from the bearer token"""
    if credentials is None:
        raise _credentials_exception()

    return user_from_claims(verify_token(credentials.credentials))
