"""
Authentication boundary — resolve the caller from a JWT.

Tokens are issued elsewhere; this module only verifies them.  The token is
read from ``Authorization: Bearer …`` or, failing that, the ``access_token``
cookie.  Its ``sub`` claim is the user id.
"""

from typing import Optional

from fastapi import HTTPException, Request, status
from jose import JWTError, jwt

from app.config import settings

COOKIE_KEY = "access_token"


def _token_from_request(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    return request.cookies.get(COOKIE_KEY)


def get_optional_user_id(request: Request) -> Optional[int]:
    """
    Decode the JWT and return the user id.
    Returns None when no valid token is present (allows public endpoints).
    """
    token = _token_from_request(request)
    if not token:
        return None
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = int(payload.get("sub", 0))
    except (JWTError, ValueError, TypeError):
        return None
    return user_id or None


def get_current_user_id(request: Request) -> int:
    user_id = get_optional_user_id(request)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return user_id
