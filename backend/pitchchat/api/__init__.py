"""HTTP boundary to the external messaging API.

Services:
    - MessagingApiClient: async client for room and message endpoints.

Exceptions:
    - MessagingApiError and its FetchError / SendError / MutationError subclasses.
"""
from .client import MessagingApiClient
from .errors import FetchError, MessagingApiError, MutationError, SendError

__all__ = [
    "MessagingApiClient",
    "MessagingApiError",
    "FetchError",
    "SendError",
    "MutationError",
]
