"""
Bearer-token helper for REST routes.
"""

from typing import Optional

from starlette.requests import Request

from termrelay.auth import AuthError, extract_token, validate_token


def get_context(request: Request):
    """Get the AppContext from app state."""
    return getattr(request.app.state, "context", None)


def authenticate(request: Request) -> str:
    """
    Return the caller's user id.

    Raises:
        AuthError: If the header is missing or the token is invalid.
    """
    token: Optional[str] = extract_token(request.headers.get("authorization"))
    if not token:
        raise AuthError("Authentication required")
    claims = validate_token(token, get_context(request).settings.jwt_secret)
    return str(claims["sub"])
