"""
Standardized error response messages and builders.

This module provides consistent error messages and HTTPException builders
for the entire API, plus the mapping from engine exceptions onto HTTP
status codes.

Error Message Format Guidelines:
- Use sentence case (capitalize first letter only)
- End with a period for complete sentences
- Include relevant IDs in parentheses when helpful for debugging: "(ID: 123)"
- Use "Please try again later." for transient server errors

Usage:
    from tryout.core.error_responses import ErrorMessages, raise_not_found

    if not package:
        raise_not_found(ErrorMessages.PACKAGE_NOT_FOUND)
"""

from typing import NoReturn, Tuple

from fastapi import HTTPException, status

from tryout.core.exceptions import (
    EngineError,
    InvalidOption,
    InvalidTransition,
    NavigationOutOfRange,
    PackageNotFound,
    PersistenceFailure,
    QuestionNotInPackage,
    ResultNotReady,
    SessionAccessDenied,
    SessionNotFound,
    SubmissionPersistenceFailure,
)


class ErrorMessages:
    """Centralized error message constants and templates.

    Naming Convention:
    - Constants: SCREAMING_SNAKE_CASE for static messages
    - Methods: snake_case for templates that accept parameters
    """

    # ==========================================================================
    # Authentication Errors (401)
    # ==========================================================================
    INVALID_TOKEN = "Invalid authentication token."

    # ==========================================================================
    # Authorization Errors (403)
    # ==========================================================================
    SESSION_ACCESS_DENIED = "Not authorized to access this tryout session."

    # ==========================================================================
    # Not Found Errors (404)
    # ==========================================================================
    SESSION_NOT_FOUND = "Tryout session not found."
    PACKAGE_NOT_FOUND = "Tryout package not found."
    QUESTION_NOT_IN_PACKAGE = "Question does not belong to this tryout package."
    RESULT_NOT_READY = (
        "The result is not available yet. Please submit the tryout first."
    )
    RANKING_NOT_FOUND = "No ranking entry for this user in this package."

    # ==========================================================================
    # Bad Request Errors (400)
    # ==========================================================================
    INVALID_OPTION = "Selected option is not valid for this question."

    # ==========================================================================
    # Service Unavailable (503)
    # ==========================================================================
    PERSISTENCE_UNAVAILABLE = (
        "Your progress could not be saved right now. Please try again later."
    )
    SUBMISSION_PENDING = (
        "Your answers were received but the result could not be saved yet. "
        "It will be finalized automatically; please try again shortly."
    )

    # ==========================================================================
    # Server Errors (500)
    # ==========================================================================
    INTERNAL_ERROR = "An unexpected error occurred. Please try again later."

    # ==========================================================================
    # Template Methods for Dynamic Messages
    # ==========================================================================
    @staticmethod
    def invalid_transition(operation: str, current_status: str) -> str:
        """Message for an operation that is not allowed in the current state."""
        return (
            f"Cannot {operation} while the session is {current_status}."
        )

    @staticmethod
    def navigation_out_of_range(index: int, question_count: int) -> str:
        """Message for navigating outside the question list."""
        return (
            f"Question index {index} is out of range. "
            f"Valid indexes are 0 to {max(question_count - 1, 0)}."
        )


# ==============================================================================
# HTTPException Builder Functions
# ==============================================================================


def raise_unauthorized(
    detail: str,
    include_www_authenticate: bool = True,
) -> NoReturn:
    """Raise a 401 Unauthorized exception.

    Args:
        detail: User-facing error message
        include_www_authenticate: Whether to include WWW-Authenticate header

    Raises:
        HTTPException: 401 Unauthorized
    """
    headers = {"WWW-Authenticate": "Bearer"} if include_www_authenticate else None
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers=headers,
    )


def raise_not_found(detail: str) -> NoReturn:
    """Raise a 404 Not Found exception.

    Args:
        detail: User-facing error message

    Raises:
        HTTPException: 404 Not Found
    """
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=detail,
    )


# ==============================================================================
# Engine Exception Mapping
# ==============================================================================


def engine_error_status(exc: EngineError) -> Tuple[int, str]:
    """Map an engine exception onto an HTTP status code and user-facing message.

    Args:
        exc: The engine exception raised by the session controller

    Returns:
        Tuple of (status_code, detail)
    """
    if isinstance(exc, SessionNotFound):
        return status.HTTP_404_NOT_FOUND, ErrorMessages.SESSION_NOT_FOUND
    if isinstance(exc, PackageNotFound):
        return status.HTTP_404_NOT_FOUND, ErrorMessages.PACKAGE_NOT_FOUND
    if isinstance(exc, QuestionNotInPackage):
        return status.HTTP_404_NOT_FOUND, ErrorMessages.QUESTION_NOT_IN_PACKAGE
    if isinstance(exc, ResultNotReady):
        return status.HTTP_404_NOT_FOUND, ErrorMessages.RESULT_NOT_READY
    if isinstance(exc, SessionAccessDenied):
        return status.HTTP_403_FORBIDDEN, ErrorMessages.SESSION_ACCESS_DENIED
    if isinstance(exc, InvalidTransition):
        return status.HTTP_409_CONFLICT, ErrorMessages.invalid_transition(
            exc.operation, exc.current_status
        )
    if isinstance(exc, InvalidOption):
        return status.HTTP_400_BAD_REQUEST, ErrorMessages.INVALID_OPTION
    if isinstance(exc, NavigationOutOfRange):
        return status.HTTP_400_BAD_REQUEST, ErrorMessages.navigation_out_of_range(
            exc.index, exc.question_count
        )
    if isinstance(exc, SubmissionPersistenceFailure):
        return status.HTTP_503_SERVICE_UNAVAILABLE, ErrorMessages.SUBMISSION_PENDING
    if isinstance(exc, PersistenceFailure):
        return (
            status.HTTP_503_SERVICE_UNAVAILABLE,
            ErrorMessages.PERSISTENCE_UNAVAILABLE,
        )
    return status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorMessages.INTERNAL_ERROR
