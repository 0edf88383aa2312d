"""Domain errors raised by the gig service.

Every error carries the HTTP status it maps to and an optional list of
human-readable details, rendered by the handler registered in ``main.py``.
"""
from typing import List, Optional
from fastapi import status


class MarketplaceError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class NotFoundError(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND


class UnauthorizedError(MarketplaceError):
    status_code = status.HTTP_401_UNAUTHORIZED


class BadRequestError(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidStateError(BadRequestError):
    """The bid is no longer PENDING."""


class ConflictError(BadRequestError):
    """The gig is no longer OPEN; another hire won the race."""


class InfrastructureError(MarketplaceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
