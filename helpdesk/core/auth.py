"""
JWT verification utilities.

WHY: Sessions are issued by the external auth provider (e.g. Supabase).
This service never creates credentials; it only verifies bearer tokens and
extracts the subject so the profile directory can resolve a principal.
"""

from typing import Dict, Any, Optional
from jose import jwt, JWTError

from helpdesk.core.config import settings
from helpdesk.core.exceptions import (
    TokenExpiredError,
    TokenInvalidError,
)


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a JWT token.

    WHY: Token verification ensures:
    1. Signature is valid (token not tampered with)
    2. Token hasn't expired
    3. Token was issued for this audience, when one is configured

    Args:
        token: JWT token string

    Returns:
        Decoded token payload

    Raises:
        TokenExpiredError: If token has expired
        TokenInvalidError: If token is malformed or signature invalid
    """
    options = {"verify_aud": settings.JWT_AUDIENCE is not None}
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            options=options,
        )
        return payload

    except jwt.ExpiredSignatureError:
        # WHY: Separate exception for expired tokens allows frontend
        # to trigger token refresh without full re-authentication
        raise TokenExpiredError(message="Token has expired")

    except JWTError as e:
        raise TokenInvalidError(
            message="Invalid token",
            error=str(e),
        )


def extract_subject(payload: Dict[str, Any]) -> Dict[str, Optional[Any]]:
    """
    Pull the identity claims out of a decoded token.

    WHY: Provider tokens carry the auth user id in "sub"; internally issued
    tokens (service accounts, tests) may carry a profile_id directly.

    Returns:
        Dict with "user_id" (str or None) and "profile_id" (int or None)

    Raises:
        TokenInvalidError: If profile_id is present but not an integer
    """
    profile_id = payload.get("profile_id")
    if profile_id is not None:
        try:
            profile_id = int(profile_id)
        except (TypeError, ValueError):
            raise TokenInvalidError(message="Invalid token: malformed profile_id")
    return {
        "user_id": payload.get("sub"),
        "profile_id": profile_id,
    }
