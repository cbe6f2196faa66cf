"""JWT identity tokens: who the actor is and which roles are stored for them."""

from __future__ import annotations

import logging
import os
import time
from typing import Any

import jwt

from signoff.models.actor import Actor, ViewAsOverride

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "HS256"


class TokenExpiredError(Exception):
    """Raised when a JWT token has expired."""


class TokenInvalidError(Exception):
    """Raised when a JWT token is invalid."""


def jwt_secret() -> str:
    return os.environ.get("SIGNOFF_JWT_SECRET", "signoff-dev-secret-key-do-not-use-in-prod")


def create_token(
    user_id: str,
    *,
    project_role: str | None = None,
    org_role: str | None = None,
    session_id: str | None = None,
    exp_minutes: int = 60,
    algorithm: str = DEFAULT_ALGORITHM,
) -> str:
    """Create a JWT token for a user."""
    now = int(time.time())
    payload: dict[str, Any] = {
        "sub": user_id,
        "sid": session_id,
        "role": project_role,
        "org_role": org_role,
        "exp": now + (exp_minutes * 60),
    }
    return jwt.encode(payload, jwt_secret(), algorithm=algorithm)


def verify_token(token: str, secret: str, algorithm: str = DEFAULT_ALGORITHM) -> dict[str, Any]:
    """Verify and decode a JWT token."""
    try:
        return jwt.decode(token, secret, algorithms=[algorithm])
    except jwt.ExpiredSignatureError as e:
        logger.warning("Token expired: %s", e)
        raise TokenExpiredError("Token has expired") from e
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token: %s", e)
        raise TokenInvalidError("Token is invalid") from e


def actor_from_token(
    token: str,
    secret: str,
    view_as: ViewAsOverride | None = None,
    algorithm: str = DEFAULT_ALGORITHM,
) -> Actor:
    """Build an Actor from a verified token.

    Raises:
        TokenExpiredError: If the token has expired
        TokenInvalidError: If the token is invalid or has no subject
    """
    payload = verify_token(token, secret, algorithm)
    subject = payload.get("sub")
    if not subject:
        logger.warning("Token has no subject")
        raise TokenInvalidError("Token has no subject")
    return Actor(
        id=subject,
        session_id=payload.get("sid"),
        project_role=payload.get("role"),
        org_role=payload.get("org_role"),
        view_as=view_as,
    )
