"""Server middleware."""
from chat_gateway.server.middleware.rate_limit import RateLimitMiddleware
from chat_gateway.server.middleware.logging import RequestLoggingMiddleware

__all__ = ["RateLimitMiddleware", "RequestLoggingMiddleware"]
