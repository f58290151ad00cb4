"""
Request context middleware for log correlation.

WHAT: Captures a per-request id, client IP and user agent, and exposes
them to loggers anywhere in the request's async context.

WHY: A ticket mutation logs from the router, the service, the binder and
the dispatcher. Tagging every record with the same request id lets one
request be followed through the logs, including the background dispatch
it scheduled (asyncio tasks copy the current context).

HOW: RequestContextMiddleware stores a RequestContext in a ContextVar;
RequestIdLogFilter copies its request_id onto each LogRecord.
"""

import logging
import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@dataclass(frozen=True)
class RequestContext:
    """
    Request-scoped context data.

    Fields:
    - request_id: Correlation id (client-supplied or generated)
    - ip_address: Client IP, honoring proxy headers
    - user_agent: Client identifier
    - path / method: Request line, for log lines without the full URL
    """

    request_id: str
    ip_address: str
    user_agent: Optional[str]
    path: str
    method: str


_request_context: ContextVar[Optional[RequestContext]] = ContextVar(
    "request_context", default=None
)


def get_request_context() -> Optional[RequestContext]:
    """
    Get the current request context.

    Returns:
        RequestContext if within a request, None otherwise
    """
    return _request_context.get()


def get_client_ip(request: Request) -> str:
    """
    Extract the client IP address.

    HOW: Checks X-Real-IP, then the first X-Forwarded-For hop, then the
    socket peer.

    Security Note:
        These headers can be spoofed unless a trusted proxy overwrites them.
    """
    x_real_ip = request.headers.get("X-Real-IP")
    if x_real_ip:
        return x_real_ip.strip()

    x_forwarded_for = request.headers.get("X-Forwarded-For")
    if x_forwarded_for:
        return x_forwarded_for.split(",")[0].strip()

    if request.client and request.client.host:
        return request.client.host

    return "unknown"


def _incoming_request_id(request: Request) -> str:
    """Reuse a sane client-supplied id, otherwise mint one."""
    supplied = request.headers.get(REQUEST_ID_HEADER, "").strip()
    if supplied and len(supplied) <= 64 and supplied.replace("-", "").isalnum():
        return supplied
    return str(uuid.uuid4())


class RequestIdLogFilter(logging.Filter):
    """
    Adds request_id to every log record.

    Records emitted outside a request get "-".
    """

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = _request_context.get()
        record.request_id = ctx.request_id if ctx else "-"
        return True


def install_request_id_logging(logger_name: str = "helpdesk") -> None:
    """
    Attach RequestIdLogFilter to a logger's handlers.

    WHY: Filters on a logger only see records logged directly on it, while
    handler filters see records propagated from child loggers too.
    """
    target = logging.getLogger(logger_name)
    if not target.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s")
        )
        target.addHandler(handler)

    for handler in target.handlers:
        if not any(isinstance(f, RequestIdLogFilter) for f in handler.filters):
            handler.addFilter(RequestIdLogFilter())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that captures and stores request context.

    Stores the context in request.state (for handlers) and in a ContextVar
    (for services without the request object), echoes the request id in
    the response headers, and logs the request line with its duration.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        context = RequestContext(
            request_id=_incoming_request_id(request),
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
            path=request.url.path,
            method=request.method,
        )
        request.state.context = context
        token = _request_context.set(context)

        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = context.request_id

            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info(
                f"{context.method} {context.path} -> {response.status_code} "
                f"({elapsed_ms:.1f}ms)"
            )
            return response
        finally:
            _request_context.reset(token)
