"""
JWT validation for the WebSocket and REST surfaces.

Tokens are HS256-signed; the ``sub`` claim is the owner id used for session
accounting.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

ALGORITHM = "HS256"


class AuthError(Exception):
    """Raised when a token is missing, malformed, expired, or not verifiable."""

    pass


def validate_token(token: str, secret: Optional[str]) -> Dict[str, Any]:
    """
    Decode a token and return its claims.

    Raises:
        AuthError: If the secret is unset or the token is invalid or expired.
    """
    if not secret:
        raise AuthError("JWT_SECRET not configured")

    try:
        claims = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired") from None
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token") from None

    if not claims.get("sub"):
        raise AuthError("Token has no subject")
    return claims


def generate_token(
    user_id: str, secret: Optional[str], expires_in: timedelta = timedelta(hours=1)
) -> str:
    """Issue a token for development and testing."""
    if not secret:
        raise AuthError("JWT_SECRET not configured")

    now = datetime.now(timezone.utc)
    payload = {"sub": user_id, "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def extract_token(
    authorization: Optional[str], query_token: Optional[str] = None
) -> Optional[str]:
    """Pick a token from ``?token=`` or an ``Authorization: Bearer`` header."""
    if query_token:
        return query_token
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token:
            return token.strip()
    return None
