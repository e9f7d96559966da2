"""
Auth utilities for the Gritful API.

Identity comes from the external auth provider. When AUTH_JWT_SECRET is set,
a Bearer JWT (HS256, user id in 'sub') is verified; otherwise the X-User-Id
header is trusted (local development and tests).
"""
import logging
from typing import Optional

import jwt
from fastapi import Header, Request

from gritful.core.config import settings
from gritful.core.errors import AuthenticationError

logger = logging.getLogger("gritful")


def verify_jwt(token: str) -> str:
    """
    Verify a Bearer token and return the user id from its 'sub' claim.

    Raises:
        AuthenticationError: invalid, expired or subject-less token
    """
    options = {"verify_signature": True, "verify_exp": True, "verify_aud": bool(settings.AUTH_JWT_AUDIENCE)}
    try:
        payload = jwt.decode(
            token,
            settings.AUTH_JWT_SECRET,
            algorithms=["HS256"],
            audience=settings.AUTH_JWT_AUDIENCE,
            options=options,
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        logger.debug(f"Invalid token: {exc}")
        raise AuthenticationError("Invalid token") from exc

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Token has no subject")
    return user_id


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Development/test user ID"),
) -> str:
    """
    Extract the current user id.

    Priority:
    1. Bearer JWT (when AUTH_JWT_SECRET is configured)
    2. X-User-Id header (only when no JWT secret is configured)
    3. 401
    """
    auth_header = request.headers.get("Authorization", "")
    if settings.AUTH_JWT_SECRET:
        if auth_header.startswith("Bearer "):
            return verify_jwt(auth_header[7:])
        raise AuthenticationError("Missing Authorization (Bearer JWT) header")

    if x_user_id:
        return x_user_id

    raise AuthenticationError("Missing Authorization (Bearer JWT) or X-User-Id header")
