"""
cadet_portal/rbac.py
Authentication and request-scoped access dependencies

Resolves the bearer token to a Principal and hands each request its own
PermissionOracle. Capability checks themselves live in the oracle; nothing
here compares roles.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cadet_portal.config.settings import settings
from cadet_portal.database import get_db
from cadet_portal.errors import UnauthorizedError, ErrorCode
from cadet_portal.orm.cadet import Cadet
from cadet_portal.orm.user import User
from cadet_portal.services.cache import TTLCache
from cadet_portal.services.permission_oracle import PermissionOracle, Principal

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


# ================= TOKEN UTILS =================

def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token whose subject is the user id"""
    expire = datetime.utcnow() + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode = {
        "sub": str(user_id),
        "exp": expire,
        "type": "access"
    }
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT, None if invalid or expired"""
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


# ================= DEPENDENCIES =================

async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """Resolve the caller from the bearer token. 401 if missing or invalid."""
    if credentials is None:
        raise UnauthorizedError()

    payload = decode_token(credentials.credentials)
    if not payload or payload.get("type") != "access":
        raise UnauthorizedError("Invalid or expired token", code=ErrorCode.AUTH_INVALID)

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise UnauthorizedError("Invalid or expired token", code=ErrorCode.AUTH_INVALID)

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        logger.warning(f"Rejected token for unknown or inactive user {user_id}")
        raise UnauthorizedError("Invalid or expired token", code=ErrorCode.AUTH_INVALID)

    result = await db.execute(select(Cadet.id).where(Cadet.auth_user_id == user.id))
    cadet_id = result.scalar_one_or_none()

    return Principal(user_id=user.id, role=user.role, cadet_id=cadet_id)


async def get_permission_oracle(db: AsyncSession = Depends(get_db)) -> PermissionOracle:
    """One oracle per request so memoized answers never outlive it"""
    return PermissionOracle(db)


def get_cache(request: Request) -> TTLCache:
    """The process-wide cache built in the application lifespan"""
    return request.app.state.cache
