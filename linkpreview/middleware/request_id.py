"""Request ID middleware for request tracing.

Reads X-Request-ID from the incoming request or generates a UUID4. The ID
lives in a ContextVar so log records emitted while resolving previews or
relaying images can be tied back to the request, and is echoed on the
response.
"""

import contextvars
import re
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

# Caller-supplied IDs end up in log lines; keep them short and printable
_VALID_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "request_id", default=""
)


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        incoming = request.headers.get(REQUEST_ID_HEADER, "")
        rid = incoming if _VALID_REQUEST_ID_RE.match(incoming) else str(uuid.uuid4())
        token = request_id_var.set(rid)
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = rid
            return response
        finally:
            request_id_var.reset(token)


def get_request_id() -> str:
    """Current request ID (empty string outside a request)."""
    return request_id_var.get()
