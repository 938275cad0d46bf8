"""
HTTP middleware for the MCP runner.

Provides bearer-token authentication and request logging.
"""
import secrets
import time
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from mcp_runner.logger import get_logger

logger = get_logger(__name__)

PUBLIC_PATHS = ("/", "/public-health", "/port-test")
PUBLIC_PREFIXES = ("/files/",)


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """
    Token authentication middleware.

    Checks for the token in:
    1. Authorization header: "Bearer <token>"
    2. X-API-Key header: "<token>"

    Public paths, public prefixes (static files) and CORS preflight
    requests pass through.
    """

    def __init__(self, app, auth_token: str,
                 public_paths: Optional[list] = None,
                 public_prefixes: Optional[tuple] = None):
        super().__init__(app)
        if not auth_token:
            raise ValueError("An authentication token is required")
        self.auth_token = auth_token
        self.public_paths = set(public_paths if public_paths is not None else PUBLIC_PATHS)
        self.public_prefixes = tuple(
            public_prefixes if public_prefixes is not None else PUBLIC_PREFIXES
        )

    def _extract_token(self, request: Request) -> Optional[str]:
        """Extract token from request headers."""
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            return auth[7:].strip()

        return request.headers.get("X-API-Key")

    def _verify_token(self, token: str) -> bool:
        """Verify token using constant-time comparison."""
        return secrets.compare_digest(token.encode(), self.auth_token.encode())

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request with authentication."""
        path = request.url.path
        if path in self.public_paths or path.startswith(self.public_prefixes):
            return await call_next(request)

        if request.method == "OPTIONS":
            return await call_next(request)

        token = self._extract_token(request)

        if not token:
            logger.warning(f"Missing auth token for {request.url.path}")
            return JSONResponse(
                {
                    "error": "Authentication required",
                    "message": "Bearer token required in Authorization header",
                },
                status_code=401,
            )

        if not self._verify_token(token):
            logger.warning(f"Invalid auth token for {request.url.path}")
            return JSONResponse({"error": "Invalid authentication token"}, status_code=401)

        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log every request with its status, duration and, for per-client routes,
    the session id the router matched.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.monotonic()
        peer = request.client.host if request.client else "unknown"
        logger.info(f"{request.method} {request.url.path} from {peer}")

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"{request.method} {request.url.path} failed: {e}")
            raise

        elapsed_ms = (time.monotonic() - start_time) * 1000
        # The router writes path_params into the shared scope.
        session_id = request.scope.get("path_params", {}).get("session_id")
        client_note = f" [client {session_id}]" if session_id else ""
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"in {elapsed_ms:.2f}ms{client_note}"
        )

        response.headers["X-Response-Time"] = f"{elapsed_ms:.2f}ms"
        return response


def generate_auth_token() -> str:
    """Generate a secure random auth token."""
    return secrets.token_urlsafe(32)
