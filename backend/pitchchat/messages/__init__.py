"""Messages module: models, per-room feed and the outbound composer.

Provides:
    - MessageFeed: ordered, de-duplicated message list for one room.
    - Composer: optimistic send with confirm/rollback, edit and delete.
"""
