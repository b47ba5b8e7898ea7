"""Exceptions raised at the HTTP boundary of the messaging core.

Network and API failures propagate to the caller verbatim (one level up);
callers render a retry affordance. Nothing here is retried internally.
"""
from typing import Any, Dict, Optional


class MessagingApiError(Exception):
    """Base class for failures reported by the external messaging API.

    Attributes:
        message: Human-readable description (server message when available).
        status_code: HTTP status, or None for transport-level failures.
        details: Optional extra context (endpoint, ids, raw body excerpt).
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert the error to a dictionary for UI feedback."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
        }


class FetchError(MessagingApiError):
    """Room list or message page could not be loaded."""


class SendError(MessagingApiError):
    """An outbound message was rejected or never reached the API."""


class MutationError(MessagingApiError):
    """Edit, delete or accept request failed."""
