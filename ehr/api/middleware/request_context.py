"""Request context middleware.

Puts the details every audit entry of a request carries on ``request.state``:
``client_ip``, ``user_agent`` and ``request_id``. The request id is taken
from ``X-Request-ID`` when the caller sends one and echoed back.
"""

import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

# Checked in order; the first hop of a proxy chain is the client
PROXY_IP_HEADERS = ("x-forwarded-for", "x-real-ip")


def get_client_ip(request: Request) -> Optional[str]:
    for header in PROXY_IP_HEADERS:
        value = request.headers.get(header)
        if value:
            return value.split(",")[0].strip()
    return request.client.host if request.client else None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Captures client details for the audit trail."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        request.state.request_id = request_id
        request.state.client_ip = get_client_ip(request)
        request.state.user_agent = request.headers.get("user-agent")

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response
