"""Request correlation ids.

The id is bound with ``bind_request_id`` so structured log records and
access decisions made while serving the request carry it.
"""

import re
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from triage_access.telemetry.context import bind_request_id

REQUEST_ID_HEADER = "X-Request-ID"

# Client ids end up in logs; anything else is replaced
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def resolve_request_id(header_value: str | None) -> str:
    """Keep a well-formed client id, otherwise mint ``req_<hex>``."""
    if header_value and _VALID_REQUEST_ID.match(header_value):
        return header_value
    return f"req_{uuid.uuid4().hex}"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Binds a request id for the request and echoes it in the response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        with bind_request_id(request_id):
            response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
