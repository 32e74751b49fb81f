"""Error boundary middleware — unhandled exceptions become a generic 500.

Learn: Starlette routes the catch-all Exception handler to
ServerErrorMiddleware, which wraps the whole stack. A response built
there never passes back through RequestIdMiddleware or
SecurityHeadersMiddleware, so it would go out without X-Request-ID or
the security headers. This middleware sits innermost and turns the
exception into the same generic 500 while the other middleware can
still decorate it.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from taskgate.errors import unexpected_error_response


class ErrorBoundaryMiddleware(BaseHTTPMiddleware):
    """Answer unhandled exceptions inside the middleware stack."""

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            return unexpected_error_response(request, e)
