"""Room list for the current session, ordered most-recently-active first.

The store is a best-effort cache of the rooms visible to one (user, role)
pair. ``load_rooms`` refreshes it from the API, keeping any newer activity
already held; live ``newMessage`` events keep it current incrementally by
moving the touched room to the front, so an update never re-sorts the whole
list.

Thread Safety:
    Designed for a single asyncio event loop. Not thread-safe.
"""
import logging
from collections import OrderedDict
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Union

from pitchchat.messages.schemas import NewMessageEvent
from pitchchat.utils import utcnow

from .schemas import MessageRoom, Participant, ParticipantRole

if TYPE_CHECKING:
    from pitchchat.api.client import MessagingApiClient

logger = logging.getLogger(__name__)

# Preview shown in the room list for messages without text
ATTACHMENT_PREVIEW = "📎 Attachment"


class RoomStore:
    """Holds the session's rooms keyed by id, in most-recent-first order.

    Args:
        api: Client used to fetch and accept rooms.
    """

    def __init__(self, api: "MessagingApiClient") -> None:
        self._api = api

        # room id -> room; iteration order is the display order
        self._rooms: "OrderedDict[str, MessageRoom]" = OrderedDict()

        self.user_id: Optional[str] = None
        self.role: Optional[str] = None
        self.unread_room_count: int = 0
        self.loaded_at: Optional[datetime] = None

    # =========================================================================
    # Read access
    # =========================================================================

    @property
    def rooms(self) -> List[MessageRoom]:
        """Rooms in display order (most recently active first)."""
        return list(self._rooms.values())

    def get(self, room_id: str) -> Optional[MessageRoom]:
        return self._rooms.get(room_id)

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    @property
    def is_loaded(self) -> bool:
        return self.loaded_at is not None

    # =========================================================================
    # Loading
    # =========================================================================

    async def load_rooms(
        self,
        user_id: str,
        role: Union[ParticipantRole, str],
    ) -> List[MessageRoom]:
        """Refresh the held rooms from the user's full room list.

        Rooms missing from the response are dropped. For rooms already held,
        activity newer than the fetched copy (a live event applied while the
        request was in flight) is kept.

        Args:
            user_id: The session user.
            role: The role the user is acting under (candidate, recruiter,
                company).

        Returns:
            The rooms in display order.

        Raises:
            ValueError: If ``user_id`` or ``role`` is empty.
            FetchError: If the API call fails (not retried).
        """
        role_value = role.value if isinstance(role, ParticipantRole) else role
        if not user_id:
            raise ValueError("user_id must be non-empty")
        if not role_value:
            raise ValueError("role must be non-empty")

        fetched = await self._api.get_message_rooms(user_id, role_value)

        # Live events applied while the fetch was in flight must survive it
        same_owner = (self.user_id, self.role) == (user_id, role_value)
        merged = [
            _keep_newer(self._rooms.get(room.id), room) if same_owner else room
            for room in fetched
        ]
        ordered = sorted(merged, key=lambda room: room.lastActivityAt, reverse=True)

        self._rooms = OrderedDict((room.id, room) for room in ordered)
        self.user_id = user_id
        self.role = role_value
        self.loaded_at = utcnow()
        logger.info(f"[RoomStore] Loaded {len(self._rooms)} rooms for {role_value} {user_id}")
        return self.rooms

    # =========================================================================
    # Live updates
    # =========================================================================

    def apply_incoming_message(self, event: NewMessageEvent) -> Optional[MessageRoom]:
        """Reflect a new message in its room and move the room to the front.

        Unknown rooms are ignored; a later ``load_rooms`` reconciles them.

        Returns:
            The updated room, or None if the room is not held.
        """
        room = self._rooms.get(event.roomId)
        if room is None:
            logger.debug(f"[RoomStore] Ignoring message for unknown room {event.roomId}")
            return None

        updated = room.model_copy(update={
            "lastMessagePreview": event.body or ATTACHMENT_PREVIEW,
            # Never moves backwards, even for late events
            "lastActivityAt": max(room.lastActivityAt, event.createdAt),
        })
        self._rooms[room.id] = updated
        self._rooms.move_to_end(room.id, last=False)
        return updated

    def set_unread_count(self, count: int) -> None:
        self.unread_room_count = max(0, int(count))

    # =========================================================================
    # Room operations
    # =========================================================================

    async def accept_room(self, room_id: str) -> Optional[MessageRoom]:
        """Accept a pending conversation and mark it accepted locally.

        Raises:
            MutationError: If the API rejects the request.
        """
        returned = await self._api.accept_room(room_id)
        current = self._rooms.get(room_id)
        if current is None:
            return returned

        if returned is not None:
            updated = returned.model_copy(update={
                "lastActivityAt": max(current.lastActivityAt, returned.lastActivityAt),
                "accepted": True,
            })
        else:
            updated = current.model_copy(update={"accepted": True})
        # Assignment keeps the room's position
        self._rooms[room_id] = updated
        logger.info(f"[RoomStore] Room {room_id} accepted")
        return updated

    @staticmethod
    def find_other_participant(room: MessageRoom, user_id: str) -> Participant:
        """Return the counterpart of ``user_id`` in ``room``."""
        if room.participantA.id == user_id:
            return room.participantB
        return room.participantA

    def search(self, query: str, user_id: str) -> List[MessageRoom]:
        """Rooms whose counterpart name contains ``query`` (case-insensitive).

        A blank query returns every room.
        """
        needle = query.strip().lower()
        if not needle:
            return self.rooms
        return [
            room for room in self._rooms.values()
            if needle in self.find_other_participant(room, user_id).name.lower()
        ]


def _keep_newer(held: Optional[MessageRoom], fetched: MessageRoom) -> MessageRoom:
    """Fetched room, keeping the held activity when the held copy is newer."""
    if held is None or held.lastActivityAt <= fetched.lastActivityAt:
        return fetched
    return fetched.model_copy(update={
        "lastActivityAt": held.lastActivityAt,
        "lastMessagePreview": held.lastMessagePreview,
    })
