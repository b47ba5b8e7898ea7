"""Pitchchat real-time messaging core.

Client-side state for 1:1 conversations between candidates and recruiters
or companies: the room list, per-room message feeds merged from paginated
history and live pushes, optimistic sending, and the live channel.

Modules:
    - config: YAML settings and secrets.
    - api: HTTP client and error taxonomy.
    - rooms: room models and the RoomStore.
    - messages: message models, MessageFeed and Composer.
    - live: LiveChannelClient.
    - session: MessagingSession wiring everything for one user.
"""
__version__ = "0.1.0"
