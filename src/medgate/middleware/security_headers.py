"""Security headers middleware.

Adds transport and browser hardening headers to every successful response
and strips headers that reveal the server stack. Failure responses get
their no-store headers from the Responder.
"""

from typing import Dict

from medgate.middleware.pipeline import CallContext, CallResponse, Handler
from medgate.utils.logging import get_logger

logger = get_logger(__name__)

SECURE_ENVIRONMENTS = ("production", "staging")

BASE_HEADERS: Dict[str, str] = {
    # Prevent clickjacking
    "X-Frame-Options": "DENY",
    # Prevent MIME type sniffing
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    # Never leak record URLs through the referrer
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'self'; frame-ancestors 'none'; base-uri 'self'",
    # PHI must never be cached
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "Surrogate-Control": "no-store",
}

SENSITIVE_HEADERS = ("Server", "X-Powered-By")


class SecurityHeadersMiddleware:
    """Adds security headers to responses."""

    def __init__(self, environment: str = "development") -> None:
        self.headers = dict(BASE_HEADERS)
        if environment in SECURE_ENVIRONMENTS:
            # 1 year with subdomains and preload
            self.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains; preload"
            )
            logger.info("hsts_enabled", environment=environment)
        else:
            # Development: shorter duration for testing
            self.headers["Strict-Transport-Security"] = "max-age=3600"

    async def __call__(self, ctx: CallContext, call_next: Handler) -> CallResponse:
        response = await call_next(ctx)
        if response.ok:
            response.headers.update(self.headers)
        for header in SENSITIVE_HEADERS:
            response.headers.pop(header, None)
        return response
