"""
Sentry error tracking.

``init_sentry`` is called once from the application lifespan and is skipped
when no DSN is configured; ``capture_error`` is a no-op until it succeeds.
"""
import logging
from typing import Any, Dict, Optional

from tryout.core.config import settings

logger = logging.getLogger(__name__)

_initialized = False


def init_sentry() -> bool:
    """
    Initialize the Sentry SDK with the FastAPI integration.

    Returns:
        True if Sentry was initialized, False if skipped (no DSN) or failed.
    """
    global _initialized

    if not settings.SENTRY_DSN:
        logger.debug("Sentry initialization skipped (SENTRY_DSN not configured)")
        return False

    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.logging import LoggingIntegration

        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENV,
            release=settings.APP_VERSION,
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
            integrations=[
                LoggingIntegration(level=None, event_level=None),
                FastApiIntegration(transaction_style="endpoint"),
            ],
            send_default_pii=False,
        )
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}", exc_info=True)
        return False

    _initialized = True
    logger.info(
        f"Sentry initialized for environment '{settings.ENV}' "
        f"with {settings.SENTRY_TRACES_SAMPLE_RATE * 100:.0f}% trace sampling"
    )
    return True


def capture_error(
    exception: BaseException,
    *,
    context: Optional[Dict[str, Any]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Send an exception to Sentry with request context.

    Returns:
        Event ID if captured, None if Sentry is not initialized.
    """
    if not _initialized:
        return None

    import sentry_sdk

    with sentry_sdk.new_scope() as scope:
        if context:
            scope.set_context("additional", {k: str(v) for k, v in context.items()})
        for key, value in (tags or {}).items():
            scope.set_tag(key, value)
        return sentry_sdk.capture_exception(exception)
