"""
Best-effort side work around the session lifecycle.

Some work must never decide the outcome of the request that triggers it:
refreshing a leaderboard after a submission, flushing the last countdown
checkpoint when a stream closes, or one pass of the expiry watcher. Failures
there are logged with the session/package identifiers and counted, and the
caller carries on. Critical writes go through ``persistence_guard`` instead.

Usage:
    with graceful_failure(
        "refresh package rankings", logger, context={"package_id": package_id}
    ):
        ranking_service.recompute_rankings(package_id)
"""

import logging
from contextlib import contextmanager
from typing import Any, Generator, Optional

from tryout.observability import metrics


def _describe(operation_name: str, context: Optional[dict[str, Any]], error: Exception) -> str:
    if not context:
        return f"Failed to {operation_name}: {error}"
    details = ", ".join(f"{key}={value}" for key, value in context.items())
    return f"Failed to {operation_name} ({details}): {error}"


@contextmanager
def graceful_failure(
    operation_name: str,
    logger: logging.Logger,
    *,
    log_level: int = logging.WARNING,
    exc_info: bool = False,
    context: Optional[dict[str, Any]] = None,
) -> Generator[None, None, None]:
    """Run a block whose errors are logged and counted but never raised.

    Args:
        operation_name: What the block does, phrased to follow "Failed to"
            (e.g. "flush final timer checkpoint").
        logger: Logger of the calling module.
        log_level: Level for the failure message. Defaults to WARNING.
        exc_info: Attach the traceback to the log record.
        context: Identifiers such as ``session_id`` or ``package_id``. They are
            rendered into the message and also attached as structured log fields.
    """
    try:
        yield
    except Exception as e:
        logger.log(
            log_level,
            _describe(operation_name, context, e),
            exc_info=exc_info,
            extra=dict(context or {}),
        )
        metrics.record_error(error_type=type(e).__name__)
