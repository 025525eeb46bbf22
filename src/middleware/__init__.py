"""HTTP middleware."""

from .correlation import RequestIdMiddleware, get_request_id, REQUEST_ID_HEADER

__all__ = ["RequestIdMiddleware", "get_request_id", "REQUEST_ID_HEADER"]
