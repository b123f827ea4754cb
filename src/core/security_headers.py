"""
Security headers middleware
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

BASE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=(), payment=()",
}

# The SSO endpoints post back to external identity providers
API_CSP = "default-src 'none'; frame-ancestors 'none'; form-action 'self' https:"

DOCS_PATHS = ("/docs", "/redoc")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds security headers to every API response
    """

    def __init__(self, app, *, strict: bool = True):
        super().__init__(app)
        self.strict = strict

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        response.headers.update(BASE_HEADERS)

        if "Server" in response.headers:
            del response.headers["Server"]

        if self.strict or request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        # Swagger UI loads its assets from a CDN
        if not request.url.path.startswith(DOCS_PATHS):
            response.headers["Content-Security-Policy"] = API_CSP

        return response
