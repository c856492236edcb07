"""
Rollback-and-translate wrapper for session store writes.

Every write in ``SessionStore`` runs inside ``persistence_guard``. Engine
errors raised by the block (``DuplicateSessionStart`` and friends) pass
through after a rollback. Anything else, whether a driver error or a bug,
leaves the session clean and surfaces as ``PersistenceFailure``, which the
retry layer and the controller know how to handle.

Usage:
    with persistence_guard(db, "save timer checkpoint", session_id=session_id):
        db.add(checkpoint)
        db.commit()
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tryout.core.exceptions import EngineError, PersistenceFailure

logger = logging.getLogger(__name__)


@contextmanager
def persistence_guard(
    db: Session,
    operation_name: str,
    *,
    session_id: Optional[int] = None,
    log_level: int = logging.ERROR,
) -> Generator[None, None, None]:
    """
    Roll back on failure and re-raise non-engine errors as PersistenceFailure.

    Args:
        db: Session to roll back
        operation_name: What the block does, e.g. "save answer"
        session_id: Tryout session the write belongs to, added to the log record
        log_level: Level for the failure log

    Raises:
        PersistenceFailure: Wrapping the original error
    """
    try:
        yield
    except EngineError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        kind = "Database error" if isinstance(e, SQLAlchemyError) else "Unexpected error"
        target = f" for session {session_id}" if session_id is not None else ""
        logger.log(
            log_level,
            f"{kind} during {operation_name}{target}: {e}",
            exc_info=True,
            extra={"session_id": session_id} if session_id is not None else None,
        )
        raise PersistenceFailure(operation_name, e) from e
