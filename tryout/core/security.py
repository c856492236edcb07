"""
JWT helpers for verifying identity-service tokens.

The engine never authenticates users itself. Access tokens are issued by the
identity service with the user's id in the ``sub`` claim; this module decodes
and validates them. ``create_access_token`` mirrors the issuer's token shape
and is used by operational scripts and tests.
"""
import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from tryout.core.config import settings
from tryout.core.datetime_utils import utc_now

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
DEFAULT_ACCESS_TOKEN_EXPIRY = timedelta(minutes=30)


def create_access_token(
    subject: str,
    expires_delta: Optional[timedelta] = None,
    extra_claims: Optional[Dict[str, Any]] = None,
) -> str:
    """Encode an access token for ``subject`` the way the identity service does."""
    issued_at = utc_now()
    claims: Dict[str, Any] = {
        **(extra_claims or {}),
        "sub": str(subject),
        "iat": issued_at,
        "exp": issued_at + (expires_delta or DEFAULT_ACCESS_TOKEN_EXPIRY),
        "type": ACCESS_TOKEN_TYPE,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    """Return the verified payload, or None if the signature or expiry is bad."""
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        logger.debug("Rejected expired access token")
    except JWTError as e:
        logger.debug(f"Rejected access token: {e}")
    return None


def user_id_from_access_token(token: str) -> Optional[str]:
    """
    Resolve the user id carried by an access token.

    Returns:
        The ``sub`` claim as a string, or None when the token does not verify,
        is not an access token, or has no subject
    """
    payload = decode_token(token)
    if payload is None or payload.get("type") != ACCESS_TOKEN_TYPE:
        return None
    subject = payload.get("sub")
    return str(subject) if subject else None
