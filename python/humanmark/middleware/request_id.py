"""X-Request-ID correlation middleware.

An incoming X-Request-ID is kept when it is a UUID (lowercased) or a short
token of letters, digits, dots, hyphens and underscores; anything else is
replaced by a fresh UUID4. The ID is bound to the logging context, stored on
request.state and echoed on the response, followed by one access log entry.

Register it last so it runs outermost, around the actor middleware.
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from humanmark.logging import clear_request_context, get_logger, set_request_context

REQUEST_ID_HEADER = "X-Request-ID"

_TOKEN_PATTERN = re.compile(r"[A-Za-z0-9._-]{1,128}")
_CANONICAL_UUID_LENGTH = 36

logger = get_logger(__name__)


def resolve_request_id(incoming: str | None) -> str:
    if not incoming:
        return str(uuid.uuid4())
    if len(incoming) == _CANONICAL_UUID_LENGTH:
        try:
            return str(uuid.UUID(incoming))
        except ValueError:
            pass
    if _TOKEN_PATTERN.fullmatch(incoming):
        return incoming
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.monotonic()
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_context(request_id, path=request.url.path, method=request.method)

        try:
            response = await call_next(request)
        except Exception:
            # unhandled_exception_handler renders the response
            logger.exception("request_failed")
            raise
        else:
            response.headers[REQUEST_ID_HEADER] = request_id
            if self.log_requests:
                actor = getattr(request.state, "actor", None)
                logger.info(
                    "request_completed",
                    status_code=response.status_code,
                    user_id=actor.id if actor else None,
                    duration_ms=round((time.monotonic() - started) * 1000, 2),
                )
            return response
        finally:
            clear_request_context()
