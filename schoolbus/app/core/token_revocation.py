"""
Token Revocation Checks using Redis.

The identity provider blacklists individual tokens and flags users whose
sessions were terminated. Caller resolution consults both before trusting a
token.
"""

import logging

logger = logging.getLogger("schoolbus.auth")

# Redis key prefix for blacklisted tokens
TOKEN_BLACKLIST_PREFIX = "blacklist:token:"
USER_TOKENS_PREFIX = "user:tokens:"


def token_blacklist_key(token: str) -> str:
    return f"{TOKEN_BLACKLIST_PREFIX}{token}"


def user_revocation_key(user_id: str) -> str:
    return f"{USER_TOKENS_PREFIX}{user_id}:revoked"


async def is_token_revoked(redis_client, token: str) -> bool:
    """
    Check if a token has been revoked.

    Args:
        redis_client: Async Redis client
        token: JWT token string to check

    Returns:
        True if token is revoked, False otherwise
    """
    try:
        exists = await redis_client.exists(token_blacklist_key(token))
        return exists > 0
    except Exception as e:
        # Fail open: Redis being down must not lock drivers out mid-trip
        logger.warning("Token revocation check failed", extra={"error": str(e)})
        return False


async def are_user_tokens_revoked(redis_client, user_id: str) -> bool:
    """
    Check if all tokens for a user have been revoked.

    Args:
        redis_client: Async Redis client
        user_id: User ID to check

    Returns:
        True if all user tokens are revoked, False otherwise
    """
    try:
        exists = await redis_client.exists(user_revocation_key(user_id))
        return exists > 0
    except Exception as e:
        logger.warning(
            "User token revocation check failed",
            extra={"user_id": user_id, "error": str(e)}
        )
        return False
