"""Security headers middleware.

Learn: Every response gets the static headers below (no MIME sniffing,
no framing, trimmed referrers). Auth routes additionally get no-store:
their bodies and Set-Cookie headers carry live tokens, and a shared cache
or the browser's back button must never replay them. HSTS is only sent
over HTTPS.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

AUTH_PREFIX = "/api/v1/auth"

STATIC_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

NO_STORE_HEADERS = {
    "Cache-Control": "no-store",
    "Pragma": "no-cache",
}

HSTS = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response: Response = await call_next(request)
        response.headers.update(STATIC_HEADERS)
        if request.url.path.startswith(AUTH_PREFIX):
            response.headers.update(NO_STORE_HEADERS)
        if request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = HSTS
        return response
