"""HTTP admission middleware built on the sliding window counter.

Rate limits are applied per API key if available, otherwise per client IP.
All application instances sharing one store share the same limits.
"""

import hashlib
from typing import Iterable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from flowlimiter.core.config import settings
from flowlimiter.core.logging import get_log_context, get_logger
from flowlimiter.core.store import StoreBackend, create_store
from flowlimiter.limiters.models import AdmissionResult
from flowlimiter.limiters.sliding_window import SlidingWindowCounter

logger = get_logger(__name__)

MAX_API_KEY_LENGTH = 512


class SlidingWindowMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce a sliding window limit on requests."""

    def __init__(
        self,
        app,
        store: Optional[StoreBackend] = None,
        window_seconds: int = 60,
        max_in_window: int = 60,
        action_prefix: str = "http",
        exempt_paths: Iterable[str] = ("/health",),
        fail_open: Optional[bool] = None,
    ):
        """Initialize the middleware.

        Args:
            app: ASGI application
            store: Shared store handle (None = build one from settings)
            window_seconds: Window length in seconds
            max_in_window: Requests allowed per client inside the window
            action_prefix: Prefix for the per-client action identity
            exempt_paths: Request paths that skip rate limiting
            fail_open: Admit requests when the store fails
                (None = settings.rate_limit_fail_open)
        """
        super().__init__(app)
        self.counter = SlidingWindowCounter(store if store is not None else create_store())
        self.window_seconds = window_seconds
        self.max_in_window = max_in_window
        self.action_prefix = action_prefix
        self.exempt_paths = frozenset(exempt_paths)
        self.fail_open = settings.rate_limit_fail_open if fail_open is None else fail_open

    def _get_client_key(self, request: Request) -> Optional[str]:
        """Get the action identity for the request.

        API keys and IP addresses are hashed so raw values never reach the
        store or the logs.

        Returns:
            Action identity, or None if the API key is too long to accept.
        """
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            api_key = auth[7:].strip()
            if len(api_key) > MAX_API_KEY_LENGTH:
                return None
            key_hash = hashlib.sha256(api_key.encode()).hexdigest()[:32]
            return f"{self.action_prefix}:apikey:{key_hash}"

        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_ip = forwarded.split(",")[0].strip()
        else:
            client_ip = request.client.host if request.client else "unknown"
        ip_hash = hashlib.sha256(client_ip.encode()).hexdigest()[:32]
        return f"{self.action_prefix}:ip:{ip_hash}"

    def _limit_headers(self, result: AdmissionResult) -> dict:
        # A failed check observed nothing, so report no remaining capacity
        remaining = 0 if result.error else max(0, self.max_in_window - result.current_count)
        return {
            "X-RateLimit-Limit": str(self.max_in_window),
            "X-RateLimit-Remaining": str(remaining),
        }

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        action_id = self._get_client_key(request)
        if action_id is None:
            return JSONResponse(
                status_code=400,
                content={"detail": f"API key too long (max {MAX_API_KEY_LENGTH} characters)"},
            )

        # The store client blocks, keep it off the event loop
        result = await run_in_threadpool(
            self.counter.is_allowed, action_id, self.window_seconds, self.max_in_window
        )

        if result.error and self.fail_open:
            logger.warning(
                f"Rate limiting fail-open triggered: {result.error}. "
                "Request allowed without rate limit check.",
                extra=get_log_context(limiter="sliding_window", action_id=action_id),
            )
            return await call_next(request)

        if not result.allowed:
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": "Rate limit exceeded. Please try again later.",
                    "retry_after": self.window_seconds,
                },
                headers={
                    **self._limit_headers(result),
                    "Retry-After": str(self.window_seconds),
                },
            )

        response = await call_next(request)
        response.headers.update(self._limit_headers(result))
        return response
