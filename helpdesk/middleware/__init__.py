"""
Middleware package.

WHY: Middleware provides cross-cutting concerns that apply to all
requests; here, request context for log correlation.
"""

from helpdesk.middleware.request_context import (
    RequestContextMiddleware,
    RequestIdLogFilter,
    RequestContext,
    get_request_context,
    get_client_ip,
    install_request_id_logging,
)

__all__ = [
    "RequestContextMiddleware",
    "RequestIdLogFilter",
    "RequestContext",
    "get_request_context",
    "get_client_ip",
    "install_request_id_logging",
]
