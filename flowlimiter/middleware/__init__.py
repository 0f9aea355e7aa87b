"""HTTP middleware for FastAPI and Starlette applications."""

from flowlimiter.middleware.rate_limit import SlidingWindowMiddleware

__all__ = ["SlidingWindowMiddleware"]
