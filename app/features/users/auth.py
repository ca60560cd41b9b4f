"""
Authentication utilities for bearer JWT verification.

Tokens are issued by the console's identity provider and signed with the
shared secret in JWT_SECRET. This service only verifies them.
"""
from datetime import datetime, timedelta
import jwt
from fastapi import HTTPException, status

from app.core import config
from app.utils import utcnow


def verify_jwt_token(token: str) -> dict:
    """
    Verify a JWT and return its payload.

    Args:
        token: JWT token from Authorization header

    Returns:
        Decoded JWT payload; ``sub`` holds the user id

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )


def create_access_token(user_id: str, expires_in: timedelta = timedelta(hours=1), now: datetime | None = None) -> str:
    """
    Sign a token for ``user_id``.

    Used by tests and local tooling; production tokens come from the
    identity provider.
    """
    issued_at = now or utcnow()
    payload = {"sub": user_id, "iat": issued_at, "exp": issued_at + expires_in}
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
