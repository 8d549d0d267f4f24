"""Caller identity for decision routes.

Tokens are issued by the web front end's session layer and signed with
the shared SECRET_KEY. Every decision is stored under the token's 'sub'
claim, and requests without a valid token are rejected with 401.
"""

from typing import Optional

from fastapi import Header, HTTPException
from jose import JWTError, jwt

from config import get_settings
from utils.logging import get_logger, set_request_context

logger = get_logger(__name__)


def _bearer_token(authorization: str) -> Optional[str]:
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def decode_user_id(token: str) -> Optional[str]:
    """Return the token's 'sub' claim, or None if the token is not valid."""
    settings = get_settings()
    secret_key = settings.get_secret_key()
    if not secret_key:
        logger.error("SECRET_KEY not configured - cannot validate JWT tokens")
        return None

    try:
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[settings.algorithm],
            options={"require_sub": True, "verify_exp": True, "verify_iat": True},
        )
    except JWTError:
        # Never log the token itself
        logger.warning("JWT validation failed")
        return None

    user_id = payload.get("sub")
    return str(user_id) if user_id else None


async def get_current_user_id(
    authorization: Optional[str] = Header(None),
) -> Optional[str]:
    """Resolve the caller's user_id from a "Bearer <jwt>" header.

    Returns:
        The token's 'sub' claim, or None when the header is missing,
        malformed or fails validation
    """
    if not authorization:
        return None
    token = _bearer_token(authorization)
    if token is None:
        logger.warning("Invalid authorization header format")
        return None
    return decode_user_id(token)


async def require_auth(
    authorization: Optional[str] = Header(None),
) -> str:
    """Authenticated user_id for the request; 401 otherwise."""
    user_id = await get_current_user_id(authorization)
    if user_id is None:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    set_request_context(user_id=user_id)
    return user_id
