"""Outbound message path: optimistic insert, submit, confirm or roll back.

Send sequence:
    1. insert an optimistic entry into the room's feed, if the feed is open
    2. submit the message to the API
    3a. on success, wait (bounded) for the live-channel echo, then merge the
        confirmed message explicitly; merging is idempotent, so this is safe
        whether or not the echo arrived
    3b. on any failure, cancellation included, roll the optimistic entry
        back and re-raise

Nothing is resent automatically; the caller decides whether to retry.
"""
import logging
from typing import TYPE_CHECKING, Callable, Optional, Sequence

from .feed import MessageFeed
from .schemas import Message, MessageFile, NewMessageEvent, OutgoingFile

if TYPE_CHECKING:
    from pitchchat.api.client import MessagingApiClient
    from pitchchat.rooms.store import RoomStore

logger = logging.getLogger(__name__)

# Default bounded wait for the echo of our own send (seconds)
DEFAULT_ECHO_TIMEOUT = 3.0

FeedLookup = Callable[[str], Optional[MessageFeed]]


class Composer:
    """Sends, edits and deletes messages on behalf of one user.

    Args:
        api: Client used for message mutations.
        sender_id: The session user; stamped on every outbound message.
        feed_lookup: Returns the open feed for a room id, or None when the
            room is not open.
        room_store: Optional room list to update after a confirmed send.
        echo_timeout: Bounded wait for the live echo before confirming.
    """

    def __init__(
        self,
        api: "MessagingApiClient",
        sender_id: str,
        feed_lookup: FeedLookup,
        room_store: Optional["RoomStore"] = None,
        echo_timeout: float = DEFAULT_ECHO_TIMEOUT,
    ) -> None:
        self._api = api
        self.sender_id = sender_id
        self._feed_lookup = feed_lookup
        self._room_store = room_store
        self.echo_timeout = echo_timeout

    async def send(
        self,
        room_id: str,
        body: Optional[str] = None,
        attachments: Sequence[OutgoingFile] = (),
    ) -> Message:
        """Send a message with text, attachments, or both.

        Args:
            room_id: Target room.
            body: Optional message text.
            attachments: Files to upload with the message.

        Returns:
            The server-confirmed message.

        Raises:
            ValueError: If both ``body`` and ``attachments`` are empty.
            SendError: If the API rejects the message (e.g. the room has not
                been accepted yet). The optimistic entry is rolled back first,
                as it is for any other exception or cancellation.
        """
        text = body if body and body.strip() else None
        if text is None and not attachments:
            raise ValueError("A message needs a body or at least one attachment")

        feed = self._feed_lookup(room_id)
        temp_id: Optional[str] = None
        if feed is not None:
            # Attachments have no URL until the upload completes
            placeholders = [MessageFile(filename=f.filename) for f in attachments]
            temp_id = feed.insert_optimistic(self.sender_id, text, placeholders)

        try:
            confirmed = await self._api.create_message(
                room_id, self.sender_id, text, attachments, client_temp_id=temp_id
            )
        except BaseException:
            # Includes cancellation; a pending entry must never outlive its send
            if feed is not None and temp_id is not None:
                feed.rollback(temp_id)
            logger.warning(f"[Composer] Send to room {room_id} failed, rolled back {temp_id}")
            raise

        if temp_id is not None:
            confirmed = confirmed.model_copy(update={"clientTempId": temp_id})

        # The room may have been switched while the request was in flight
        feed = self._feed_lookup(room_id) or feed
        if feed is not None:
            try:
                echoed = await feed.wait_for_message(confirmed.id, self.echo_timeout)
                if not echoed:
                    logger.debug(f"[Composer] No echo for {confirmed.id}, confirming explicitly")
            finally:
                feed.merge_live(confirmed)

        if self._room_store is not None:
            self._room_store.apply_incoming_message(NewMessageEvent.from_message(confirmed))

        logger.info(f"[Composer] Sent message {confirmed.id} to room {room_id}")
        return confirmed

    async def edit(self, room_id: str, message_id: str, body: str) -> Message:
        """Replace a message's text.

        Raises:
            ValueError: If ``body`` is blank.
            MutationError: If the API rejects the edit.
        """
        if not body or not body.strip():
            raise ValueError("Edited message body must be non-empty")

        updated = await self._api.update_message(message_id, body)
        feed = self._feed_lookup(room_id)
        if feed is not None:
            feed.merge_live(updated)
        return updated

    async def delete(self, room_id: str, message_id: str) -> None:
        """Delete a message and drop it from the open feed.

        Raises:
            MutationError: If the API rejects the delete.
        """
        await self._api.delete_message(message_id)
        feed = self._feed_lookup(room_id)
        if feed is not None:
            feed.remove(message_id)
        logger.info(f"[Composer] Deleted message {message_id} from room {room_id}")
