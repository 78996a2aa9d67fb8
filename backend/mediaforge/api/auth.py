"""
Authentication dependencies
"""

import hmac
from typing import Any, Dict, Optional

import jwt
from fastapi import Header, HTTPException, status
from pydantic import BaseModel

from mediaforge.config.settings import settings
from mediaforge.services.observability import logger


USER_ID_CLAIMS = ("sub", "uid", "user_id", "userId", "id")


class AuthContext(BaseModel):
    user_id: str


class AuthError(Exception):
    """Token missing, malformed or not carrying a user id"""

    pass


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": {"code": code, "message": message}},
    )


def verify_token(token: str) -> AuthContext:
    """
    Verify an HS256 JWT and extract the user id

    Raises:
        AuthError: If the token is invalid or has no user id claim
    """
    try:
        claims: Dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"verify_aud": False},
        )
    except jwt.PyJWTError as exc:
        raise AuthError(str(exc)) from exc

    for claim in USER_ID_CLAIMS:
        value = claims.get(claim)
        if value:
            return AuthContext(user_id=str(value))
    raise AuthError("Token carries no user id")


async def require_user(
    authorization: Optional[str] = Header(None),
) -> AuthContext:
    """
    FastAPI dependency: the authenticated user

    Raises:
        HTTPException: 401 if the bearer token is missing or invalid
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        raise _error(status.HTTP_401_UNAUTHORIZED, "UNAUTHORIZED", "Missing bearer token")

    try:
        return verify_token(authorization[7:].strip())
    except AuthError as exc:
        logger.warning("auth_failed", error=str(exc))
        raise _error(status.HTTP_401_UNAUTHORIZED, "UNAUTHORIZED", "Invalid token")


async def require_internal(
    x_internal: Optional[str] = Header(None, alias="X-Internal"),
) -> None:
    """
    FastAPI dependency for internal-only endpoints

    Raises:
        HTTPException: 403 unless X-Internal matches the configured worker token
    """
    expected = settings.internal_worker_token
    if not x_internal or not hmac.compare_digest(x_internal.encode(), expected.encode()):
        logger.warning("internal_auth_failed")
        raise _error(status.HTTP_403_FORBIDDEN, "FORBIDDEN", "Internal endpoint")
