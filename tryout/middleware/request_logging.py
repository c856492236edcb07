"""
Request/response logging middleware for tracking API interactions.
"""
import logging
import re
import time
import uuid
from typing import Callable, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from tryout.core.config import settings
from tryout.core.logging_config import request_id_context

logger = logging.getLogger(__name__)

_SESSION_PATH = re.compile(rf"^{re.escape(settings.API_V1_PREFIX)}/sessions/(\d+)(/[\w/]*)?$")


def _session_id_from_path(path: str) -> Optional[int]:
    match = _SESSION_PATH.match(path)
    return int(match.group(1)) if match else None


def _client_identifier(request: Request) -> str:
    # Only a short prefix of the bearer token is ever logged
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        return f"token:{token[:10]}..."
    return "anonymous"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log each request and its response with a shared request ID.

    The request ID comes from ``X-Request-ID`` (or is generated), is attached
    to every log record emitted while the request is handled, and is echoed
    back on the response. Requests under ``/sessions/{id}`` also carry
    ``session_id``.

    Health probes and heartbeats arrive every few seconds per client and are
    logged at DEBUG. For the countdown stream only the opening of the stream
    is logged here; its duration covers the headers, not the stream.
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        prefix = settings.API_V1_PREFIX
        self.quiet_paths = (f"{prefix}/health", f"{prefix}/ping")

    def _is_quiet(self, path: str) -> bool:
        return path in self.quiet_paths or path.endswith("/heartbeat")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_context.set(request_id)

        path = request.url.path
        fields: Dict[str, object] = {
            "method": request.method,
            "path": path,
            "client_host": request.client.host if request.client else "unknown",
            "user_identifier": _client_identifier(request),
        }
        session_id = _session_id_from_path(path)
        if session_id is not None:
            fields["session_id"] = session_id

        quiet = self._is_quiet(path)
        logger.log(logging.DEBUG if quiet else logging.INFO, "Incoming request", extra=fields)

        start = time.perf_counter()
        response = await call_next(request)
        fields["status_code"] = response.status_code
        fields["duration_ms"] = round((time.perf_counter() - start) * 1000, 2)

        response.headers["X-Request-ID"] = request_id

        if response.status_code >= 500:
            logger.error("Server error response", extra=fields)
        elif response.status_code >= 400:
            logger.warning("Client error response", extra=fields)
        elif path.endswith("/countdown"):
            logger.info("Countdown stream opened", extra=fields)
        else:
            logger.log(logging.DEBUG if quiet else logging.INFO, "Request completed", extra=fields)

        return response
