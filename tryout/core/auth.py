"""
FastAPI authentication dependencies.
"""
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .error_responses import ErrorMessages, raise_unauthorized
from .security import user_id_from_access_token

# Requests without Bearer credentials are rejected by HTTPBearer itself
bearer_scheme = HTTPBearer()


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> str:
    """
    Resolve the caller's user id from the bearer token.

    The id is only used for session ownership checks; user records live in
    the identity service.

    Raises:
        HTTPException: 401 if the token does not verify or carries no subject
    """
    user_id = user_id_from_access_token(credentials.credentials)
    if user_id is None:
        raise_unauthorized(ErrorMessages.INVALID_TOKEN)
    return user_id
