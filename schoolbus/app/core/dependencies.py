"""
Authentication dependencies for FastAPI.

Resolves the bearer token into a ``CallerIdentity``. Absence of identity is
always ``AuthenticationError`` (401), distinct from authorization failures.
"""

from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from schoolbus.app.core.exceptions import AuthenticationError, InsufficientPermissionsError
from schoolbus.app.core.jwt import decode_access_token
from schoolbus.app.core.redis_client import get_redis
from schoolbus.app.core.token_revocation import is_token_revoked, are_user_tokens_revoked
from schoolbus.app.db.session import get_db
from schoolbus.app.models.user import User
from schoolbus.app.schemas.auth import CallerIdentity

# HTTP Bearer security scheme; missing credentials are reported as 401 below
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
) -> CallerIdentity:
    """
    FastAPI dependency for JWT authentication.

    Checks:
    1. Credentials are present
    2. JWT signature and expiry are valid
    3. This token has not been revoked
    4. The user's tokens have not all been revoked
    5. The user exists and is still active (role and school come from the
       user record, not the token)

    Raises:
        AuthenticationError: 401 if no valid identity is present
        InsufficientPermissionsError: 403 if the user is inactive
    """
    if credentials is None:
        raise AuthenticationError("User must be authenticated")

    token = credentials.credentials

    # 1. Decode and validate JWT
    payload = decode_access_token(token)
    if payload is None:
        raise AuthenticationError("Could not validate credentials")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token payload")

    # 2. Check if this specific token has been revoked
    if await is_token_revoked(redis, token):
        raise AuthenticationError("Token has been revoked")

    # 3. Check if all user tokens have been revoked
    if await are_user_tokens_revoked(redis, user_id):
        raise AuthenticationError("User access has been revoked")

    # 4. Real-time database check
    user = await db.get(User, user_id)

    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise InsufficientPermissionsError("User account is inactive")

    return CallerIdentity(user_id=user.id, role=user.role, school_id=user.school_id)
