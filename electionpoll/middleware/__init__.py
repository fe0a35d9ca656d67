"""HTTP middleware."""
from electionpoll.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
