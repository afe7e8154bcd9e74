"""
Bearer tokens for drivers, parents and admins.

The identity provider issues tokens in production. ``create_access_token``
exists for tooling and the test suite; ``decode_access_token`` runs on every
request before the caller is looked up.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from schoolbus.app.core.config import settings


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign a token whose ``sub`` is the user's document id.

    Role and school are not trusted from the token; they are read from the
    user record at request time.

    Example payload:
        {"sub": "driver-d1", "exp": 1234567890}
    """
    claims = data.copy()
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    claims["exp"] = datetime.now(timezone.utc) + lifetime
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Claims of a valid, unexpired token, or None."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
