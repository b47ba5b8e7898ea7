"""Per-room message feed merging paginated history with live pushes.

The feed holds two collections:
    - confirmed messages keyed by server id, kept sorted by ``(createdAt, id)``
    - pending (optimistic) entries keyed by client temp id, in compose order,
      always rendered after the confirmed messages

Every source of messages (page loads, live pushes, composer confirmations)
goes through the same upsert rule, so the final state does not depend on the
order in which pages and events arrived:
    - same id already held  -> replace unless the incoming copy is older
      (``updatedAt``, falling back to ``createdAt``)
    - matching clientTempId -> the pending entry is dropped, the confirmed
      copy takes its place (live pushes without one fall back to the oldest
      pending entry with the same sender and content)
    - otherwise             -> inserted at its sort position

Duplicates and out-of-order arrivals are expected races, never errors.

Thread Safety:
    Designed for a single asyncio event loop. Not thread-safe.
"""
import asyncio
import bisect
import logging
import uuid
from collections import OrderedDict
from datetime import datetime
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from pitchchat.utils import utcnow

from .schemas import DeliveryStatus, Message, MessageFile, MessagePage, NewMessageEvent, PageMeta

if TYPE_CHECKING:
    from pitchchat.api.client import MessagingApiClient

logger = logging.getLogger(__name__)

# Default page size used when the caller does not pass one
DEFAULT_PAGE_SIZE = 20

# Maximum page size to keep requests bounded
MAX_PAGE_SIZE = 100


class MessageFeed:
    """Ordered, de-duplicated message list for one room.

    Args:
        room_id: Room this feed belongs to.
        api: Client used by :meth:`load_page`.
        default_page_size: Page size when none is given.
        max_page_size: Upper bound applied to every page request.
    """

    def __init__(
        self,
        room_id: str,
        api: "MessagingApiClient",
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        self.room_id = room_id
        self._api = api
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size

        # message id -> confirmed Message
        self._confirmed: Dict[str, Message] = {}

        # sorted (createdAt, id) keys of confirmed messages
        self._order: List[Tuple[datetime, str]] = []

        # clientTempId -> pending Message, in compose order
        self._pending: "OrderedDict[str, Message]" = OrderedDict()

        # ids deleted on the server; late page loads must not bring them back
        self._deleted: Set[str] = set()

        # message id -> events awaiting that id (composer echo wait)
        self._waiters: Dict[str, List[asyncio.Event]] = {}

        self.last_meta: Optional[PageMeta] = None
        self.loaded_pages: Set[int] = set()
        self.loaded_at: Optional[datetime] = None

    # =========================================================================
    # Read access
    # =========================================================================

    @property
    def messages(self) -> List[Message]:
        """Confirmed messages in ``(createdAt, id)`` order, then pending ones."""
        confirmed = [self._confirmed[message_id] for _, message_id in self._order]
        return confirmed + list(self._pending.values())

    def __len__(self) -> int:
        return len(self._confirmed) + len(self._pending)

    def get(self, message_id: str) -> Optional[Message]:
        return self._confirmed.get(message_id) or self._pending.get(message_id)

    def contains(self, message_id: str) -> bool:
        return message_id in self._confirmed

    def pending_ids(self) -> List[str]:
        return list(self._pending.keys())

    @property
    def is_loaded(self) -> bool:
        return self.last_meta is not None

    @property
    def has_more(self) -> bool:
        return self.last_meta is not None and self.last_meta.has_next

    @property
    def next_page(self) -> Optional[int]:
        """Next page number to request, or None when history is exhausted."""
        if self.last_meta is None:
            return 1
        if not self.last_meta.has_next:
            return None
        return max(self.loaded_pages) + 1

    # =========================================================================
    # Pagination
    # =========================================================================

    async def load_page(self, page: int = 1, page_size: Optional[int] = None) -> MessagePage:
        """Fetch one page of history and merge it into the feed.

        Pages may arrive in any order and overlap live pushes; the shared
        upsert rule keeps the feed free of duplicates either way.

        Args:
            page: 1-based page number.
            page_size: Messages per page (clamped to ``max_page_size``).

        Returns:
            The page as returned by the API.

        Raises:
            ValueError: If ``page`` or ``page_size`` is below 1.
            FetchError: If the API call fails (not retried).
        """
        if page < 1:
            raise ValueError("page must be >= 1")
        size = page_size if page_size is not None else self._default_page_size
        if size < 1:
            raise ValueError("page_size must be >= 1")
        size = min(size, self._max_page_size)

        result = await self._api.get_messages(self.room_id, page, size)
        merged = self.merge_many(result.messages)

        self.last_meta = result.meta
        self.loaded_pages.add(page)
        self.loaded_at = utcnow()
        logger.debug(
            f"[MessageFeed] room={self.room_id} page={page} fetched={len(result.messages)} "
            f"new={merged} total={len(self._confirmed)}"
        )
        return result

    async def load_next_page(self, page_size: Optional[int] = None) -> Optional[MessagePage]:
        """Load the next older page, or return None if there is none."""
        page = self.next_page
        if page is None:
            return None
        return await self.load_page(page, page_size)

    # =========================================================================
    # Merging
    # =========================================================================

    def merge_live(self, message: Message) -> bool:
        """Merge a pushed (or composer-confirmed) message into the feed.

        Args:
            message: Confirmed message; ``clientTempId`` is set when it is the
                echo of a locally composed entry.

        Returns:
            True if the message was not previously held under its id.
        """
        if message.roomId != self.room_id:
            logger.debug(
                f"[MessageFeed] Ignoring message {message.id} for room {message.roomId} "
                f"in feed {self.room_id}"
            )
            return False

        if message.clientTempId and message.clientTempId in self._pending:
            self._pending.pop(message.clientTempId)
            logger.debug(f"[MessageFeed] Confirmed {message.clientTempId} as {message.id}")

        return self._upsert(message)

    def merge_event(self, event: NewMessageEvent) -> bool:
        """Merge a live push.

        A push without a usable ``clientTempId`` that matches one of our pending
        entries (same sender and content) replaces the oldest
        such entry, so the draft is not shown twice before the send returns.
        """
        message = event.to_message()
        if (
            message.roomId == self.room_id
            and message.clientTempId not in self._pending
            and message.id not in self._confirmed
        ):
            self._adopt_pending(message)
        return self.merge_live(message)

    def merge_many(self, messages: Iterable[Message]) -> int:
        """Upsert a batch of messages; returns how many ids were new."""
        return sum(1 for message in messages if self.merge_live(message))

    def remove(self, message_id: str) -> Optional[Message]:
        """Drop a confirmed message deleted on the server."""
        self._deleted.add(message_id)
        return self._discard(message_id)

    def _discard(self, message_id: str) -> Optional[Message]:
        message = self._confirmed.pop(message_id, None)
        if message is None:
            return None
        index = bisect.bisect_left(self._order, message.sort_key)
        if index < len(self._order) and self._order[index] == message.sort_key:
            del self._order[index]
        return message

    def _adopt_pending(self, message: Message) -> Optional[Message]:
        for temp_id, pending in self._pending.items():
            if (
                pending.senderId == message.senderId
                and (pending.body or "") == (message.body or "")
                and len(pending.attachments) == len(message.attachments)
            ):
                logger.debug(f"[MessageFeed] Matched echo {message.id} to pending {temp_id}")
                return self._pending.pop(temp_id)
        return None

    def _upsert(self, message: Message) -> bool:
        if message.id in self._deleted:
            return False
        message = _as_confirmed(message)
        existing = self._confirmed.get(message.id)

        if existing is None:
            self._confirmed[message.id] = message
            bisect.insort(self._order, message.sort_key)
            self._notify(message.id)
            return True

        if _is_older(message, existing):
            logger.debug(f"[MessageFeed] Keeping newer copy of {message.id}")
            return False

        if existing.sort_key != message.sort_key:
            self._discard(message.id)
            bisect.insort(self._order, message.sort_key)
        self._confirmed[message.id] = message
        self._notify(message.id)
        return False

    # =========================================================================
    # Optimistic entries
    # =========================================================================

    def insert_optimistic(
        self,
        sender_id: str,
        body: Optional[str] = None,
        attachments: Sequence[MessageFile] = (),
    ) -> str:
        """Show a locally composed message immediately.

        The entry is appended after everything currently loaded and carries
        a freshly generated temp id until the server confirms it.

        Returns:
            The client temp id used to confirm or roll back the entry.
        """
        temp_id = f"tmp-{uuid.uuid4()}"
        self._pending[temp_id] = Message(
            id=temp_id,
            roomId=self.room_id,
            senderId=sender_id,
            body=body,
            attachments=list(attachments),
            createdAt=utcnow(),
            clientTempId=temp_id,
            status=DeliveryStatus.PENDING,
        )
        return temp_id

    def rollback(self, client_temp_id: str) -> Optional[Message]:
        """Withdraw a pending entry whose send failed.

        Returns:
            The withdrawn entry marked ``ROLLED_BACK``, or None if it was
            already confirmed or never existed.
        """
        message = self._pending.pop(client_temp_id, None)
        if message is None:
            return None
        logger.debug(f"[MessageFeed] Rolled back {client_temp_id} in room {self.room_id}")
        return message.model_copy(update={"status": DeliveryStatus.ROLLED_BACK})

    # =========================================================================
    # Echo waiting
    # =========================================================================

    async def wait_for_message(self, message_id: str, timeout: float) -> bool:
        """Wait until ``message_id`` is held by the feed, at most ``timeout`` seconds."""
        if message_id in self._confirmed:
            return True

        event = asyncio.Event()
        self._waiters.setdefault(message_id, []).append(event)
        try:
            await asyncio.wait_for(event.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            waiters = self._waiters.get(message_id, [])
            if event in waiters:
                waiters.remove(event)
            if not waiters:
                self._waiters.pop(message_id, None)

    def _notify(self, message_id: str) -> None:
        for event in self._waiters.get(message_id, []):
            event.set()


def _as_confirmed(message: Message) -> Message:
    if message.status == DeliveryStatus.CONFIRMED:
        return message
    return message.model_copy(update={"status": DeliveryStatus.CONFIRMED})


def _version(message: Message) -> datetime:
    return message.updatedAt or message.createdAt


def _is_older(incoming: Message, existing: Message) -> bool:
    return _version(incoming) < _version(existing)
