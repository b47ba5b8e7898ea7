"""Live channel module: the session's push connection.

Provides:
    - LiveChannelClient: reconnecting WebSocket dispatcher.
    - ConnectionState: connection lifecycle states.
"""
from .channel import (
    EVENT_MSG_COUNT,
    EVENT_NEW_MESSAGE,
    EVENT_RECONNECTED,
    ConnectionState,
    LiveChannelClient,
)

__all__ = [
    "EVENT_MSG_COUNT",
    "EVENT_NEW_MESSAGE",
    "EVENT_RECONNECTED",
    "ConnectionState",
    "LiveChannelClient",
]
