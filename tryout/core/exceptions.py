"""
Domain exceptions for the session engine.

These exceptions are HTTP-agnostic so the engine can run from endpoints,
background sweeps and tests alike. ``tryout.main`` maps them onto HTTP
responses through ``tryout.core.error_responses``.
"""
from typing import Optional


class EngineError(Exception):
    """Base class for all session engine errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class SessionNotFound(EngineError):
    """Raised when a session ID does not exist."""

    def __init__(self, session_id: int):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class PackageNotFound(EngineError):
    """Raised when a tryout package does not exist or is inactive."""

    def __init__(self, package_id: int):
        self.package_id = package_id
        super().__init__(f"Tryout package {package_id} not found")


class QuestionNotInPackage(EngineError):
    """Raised when an answer targets a question outside the session's package."""

    def __init__(self, question_id: int, package_id: int):
        self.question_id = question_id
        self.package_id = package_id
        super().__init__(
            f"Question {question_id} does not belong to package {package_id}"
        )


class SessionAccessDenied(EngineError):
    """Raised when a user operates on a session they do not own."""

    def __init__(self, session_id: int):
        self.session_id = session_id
        super().__init__(f"Not authorized to access session {session_id}")


class InvalidTransition(EngineError):
    """Raised when an operation is not valid in the session's current state.

    Never fatal: the caller reports it and the session is left untouched.
    """

    def __init__(self, session_id: int, current_status: str, operation: str):
        self.session_id = session_id
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} session {session_id} while it is {current_status}"
        )


class InvalidOption(EngineError):
    """Raised when the selected option key is not one of the question's options."""

    def __init__(self, question_id: int, option_key: str):
        self.question_id = question_id
        self.option_key = option_key
        super().__init__(
            f"Option '{option_key}' is not valid for question {question_id}"
        )


class NavigationOutOfRange(EngineError):
    """Raised when navigating to an index outside the session's question list."""

    def __init__(self, index: int, question_count: int):
        self.index = index
        self.question_count = question_count
        super().__init__(
            f"Question index {index} is out of range (0-{max(question_count - 1, 0)})"
        )


class ResultNotReady(EngineError):
    """Raised when a score result is requested before the session completed."""

    def __init__(self, session_id: int, current_status: str):
        self.session_id = session_id
        self.current_status = current_status
        super().__init__(
            f"Session {session_id} has no result yet (status: {current_status})"
        )


class PersistenceFailure(EngineError):
    """Raised when a store write keeps failing after retries.

    Attributes:
        operation_name: Human-readable name of the operation that failed
        original_error: The underlying exception, when there is one
    """

    def __init__(
        self,
        operation_name: str,
        original_error: Optional[Exception] = None,
        message: Optional[str] = None,
    ):
        self.operation_name = operation_name
        self.original_error = original_error
        super().__init__(
            message or f"Failed to {operation_name}: {original_error}"
        )


class SubmissionPersistenceFailure(PersistenceFailure):
    """Raised when the score result cannot be saved.

    The session stays ``submitting`` and the submission is retried later,
    either by the next submit call or by the expiry watcher.
    """

    retryable = True

    def __init__(self, session_id: int, original_error: Optional[Exception] = None):
        self.session_id = session_id
        super().__init__(
            "persist score result",
            original_error,
            message=(
                f"Submission for session {session_id} could not be saved; "
                "it will be retried"
            ),
        )


class DuplicateSessionStart(EngineError):
    """Raised by the store when the one-live-session index rejects an insert.

    The controller resolves it by returning the session that won the race.
    """

    def __init__(self, user_id: str, package_id: int):
        self.user_id = user_id
        self.package_id = package_id
        super().__init__(
            f"User {user_id} already has a live session for package {package_id}"
        )
