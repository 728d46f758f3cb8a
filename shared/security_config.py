from fastapi import Request, FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from typing import Optional
import hmac

# --- Rate Limiting ---
# Initialize Limiter
limiter = Limiter(key_func=get_remote_address)

def setup_rate_limiting(app: FastAPI):
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# --- Security Headers Middleware ---
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        # Security Headers
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Content-Security-Policy"] = "default-src 'self'; object-src 'none'; frame-ancestors 'none';"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        return response

# --- Shared-secret bearer check ---
def verify_bearer_token(authorization: Optional[str], secret: Optional[str]) -> bool:
    """
    Check an Authorization header against a shared secret:
    - Exact match with "Bearer <secret>" (no trimming, case-sensitive scheme)
    - An unset or empty secret never authenticates
    """
    if not secret or not authorization:
        return False
    expected = f"Bearer {secret}"
    return hmac.compare_digest(authorization.encode("utf-8"), expected.encode("utf-8"))

def client_origin(request: Request) -> dict:
    """Network origin of a caller, as far as the proxy chain lets us see it."""
    return {
        "client_ip": request.client.host if request.client else None,
        "forwarded_for": request.headers.get("x-forwarded-for"),
    }
