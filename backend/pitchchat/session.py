"""Messaging session: wires the room store, feeds, composer and live channel.

One session per authenticated user. The session owns:
    - the RoomStore, subscribed to the live channel for its whole lifetime
    - a small LRU cache of MessageFeed objects, one per visited room
    - a single "open room" slot; only the open room's feed receives live
      messages, switching rooms moves the subscription
    - the Composer, which sees only the open room's feed

Cached rooms and feeds are refetched when older than the configured stale
windows. After the live channel reconnects, the room list and the open room's
first page are refetched to cover anything missed while it was down.
"""
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Union

import httpx
from websockets.asyncio.client import connect as ws_connect

from pitchchat.api.client import MessagingApiClient
from pitchchat.api.errors import MessagingApiError
from pitchchat.config import AppSettings
from pitchchat.live.channel import (
    EVENT_MSG_COUNT,
    EVENT_NEW_MESSAGE,
    EVENT_RECONNECTED,
    LiveChannelClient,
)
from pitchchat.messages.composer import DEFAULT_ECHO_TIMEOUT, Composer
from pitchchat.messages.feed import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, MessageFeed
from pitchchat.rooms.schemas import MessageRoom, ParticipantRole
from pitchchat.rooms.store import RoomStore
from pitchchat.utils import utcnow

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Transport loggers that log every connection and frame
_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
    "websockets",
    "websockets.client",
)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging and quiet the transport libraries."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger().setLevel(level.upper())
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _is_stale(loaded_at: Optional[datetime], stale_seconds: float) -> bool:
    if loaded_at is None:
        return True
    return utcnow() - loaded_at >= timedelta(seconds=stale_seconds)


class MessagingSession:
    """Messaging state for one signed-in user.

    Args:
        api: REST client shared by every component.
        live: Push channel for this session.
        user_id: The signed-in user.
        role: Role the user acts under.
        echo_timeout: Composer's bounded echo wait.
        default_page_size: Page size for feed loads.
        max_page_size: Upper bound for feed page sizes.
        rooms_stale_seconds: Age after which the room list is refetched.
        messages_stale_seconds: Age after which an open feed is refetched.
        max_cached_feeds: Number of feeds kept after their room is closed.
    """

    def __init__(
        self,
        api: MessagingApiClient,
        live: LiveChannelClient,
        user_id: str,
        role: Union[ParticipantRole, str],
        echo_timeout: float = DEFAULT_ECHO_TIMEOUT,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
        rooms_stale_seconds: float = 10.0,
        messages_stale_seconds: float = 5.0,
        max_cached_feeds: int = 20,
    ) -> None:
        if not user_id:
            raise ValueError("user_id must be non-empty")

        self.api = api
        self.live = live
        self.user_id = user_id
        self.role = role.value if isinstance(role, ParticipantRole) else role
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.rooms_stale_seconds = rooms_stale_seconds
        self.messages_stale_seconds = messages_stale_seconds
        self.max_cached_feeds = max_cached_feeds

        self.rooms = RoomStore(api)
        self.composer = Composer(
            api,
            sender_id=user_id,
            feed_lookup=self.open_feed_for,
            room_store=self.rooms,
            echo_timeout=echo_timeout,
        )

        # room id -> feed, least recently opened first
        self._feeds: "OrderedDict[str, MessageFeed]" = OrderedDict()
        self._open_room_id: Optional[str] = None

        live.user_id = user_id
        live.subscribe(EVENT_NEW_MESSAGE, self.rooms.apply_incoming_message)
        live.subscribe(EVENT_MSG_COUNT, self.rooms.set_unread_count)
        live.subscribe(EVENT_RECONNECTED, self._on_reconnected)

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        user_id: str,
        role: Union[ParticipantRole, str],
        transport: Optional[httpx.AsyncBaseTransport] = None,
        connect: Callable[..., Any] = ws_connect,
    ) -> "MessagingSession":
        """Build a session (API client and live channel included) from settings."""
        return cls(
            api=MessagingApiClient.from_settings(settings, transport=transport),
            live=LiveChannelClient.from_settings(settings, user_id=user_id, connect=connect),
            user_id=user_id,
            role=role,
            echo_timeout=settings.composer.echo_timeout_seconds,
            default_page_size=settings.feed.default_page_size,
            max_page_size=settings.feed.max_page_size,
            rooms_stale_seconds=settings.cache.rooms_stale_seconds,
            messages_stale_seconds=settings.cache.messages_stale_seconds,
            max_cached_feeds=settings.cache.max_cached_feeds,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> List[MessageRoom]:
        """Connect the live channel and load the room list."""
        await self.live.start()
        return await self.refresh_rooms(force=True)

    async def close(self) -> None:
        await self.close_room()
        await self.live.stop()
        await self.api.aclose()
        logger.info(f"[Session] Closed session for {self.user_id}")

    async def __aenter__(self) -> "MessagingSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # =========================================================================
    # Rooms
    # =========================================================================

    async def refresh_rooms(self, force: bool = False) -> List[MessageRoom]:
        """Return the room list, refetching it when stale or forced.

        Raises:
            FetchError: If the refetch fails.
        """
        if force or _is_stale(self.rooms.loaded_at, self.rooms_stale_seconds):
            return await self.rooms.load_rooms(self.user_id, self.role)
        return self.rooms.rooms

    # =========================================================================
    # Open room
    # =========================================================================

    @property
    def open_room_id(self) -> Optional[str]:
        return self._open_room_id

    @property
    def open_feed(self) -> Optional[MessageFeed]:
        if self._open_room_id is None:
            return None
        return self._feeds.get(self._open_room_id)

    def open_feed_for(self, room_id: str) -> Optional[MessageFeed]:
        """The feed for ``room_id`` if that room is the open one."""
        if room_id != self._open_room_id:
            return None
        return self._feeds.get(room_id)

    def cached_feed(self, room_id: str) -> Optional[MessageFeed]:
        return self._feeds.get(room_id)

    async def open_room(self, room_id: str, force: bool = False) -> MessageFeed:
        """Make ``room_id`` the open room and return its feed.

        The previous room's feed stops receiving live messages but stays
        cached. The first page is (re)loaded when the feed has never been
        loaded, is older than the stale window, or ``force`` is set.

        Raises:
            ValueError: If ``room_id`` is empty.
            FetchError: If loading the first page fails; the room stays open.
        """
        if not room_id:
            raise ValueError("room_id must be non-empty")

        if self._open_room_id != room_id:
            await self.close_room()
            feed = self._feed_for(room_id)
            self._open_room_id = room_id
            self.live.subscribe(EVENT_NEW_MESSAGE, feed.merge_event)
            await self.live.join_room(room_id)
            logger.debug(f"[Session] Opened room {room_id}")
        else:
            feed = self._feeds[room_id]

        if force or _is_stale(feed.loaded_at, self.messages_stale_seconds):
            await feed.load_page(1)
        return feed

    async def close_room(self) -> None:
        """Clear the open-room slot; the feed itself stays cached."""
        room_id = self._open_room_id
        if room_id is None:
            return
        feed = self._feeds.get(room_id)
        if feed is not None:
            self.live.unsubscribe(EVENT_NEW_MESSAGE, feed.merge_event)
        self._open_room_id = None
        await self.live.leave_room(room_id)
        logger.debug(f"[Session] Closed room {room_id}")

    def _feed_for(self, room_id: str) -> MessageFeed:
        feed = self._feeds.get(room_id)
        if feed is None:
            feed = MessageFeed(
                room_id,
                self.api,
                default_page_size=self.default_page_size,
                max_page_size=self.max_page_size,
            )
            self._feeds[room_id] = feed
        self._feeds.move_to_end(room_id)

        while len(self._feeds) > self.max_cached_feeds:
            evicted_id, _ = self._feeds.popitem(last=False)
            logger.debug(f"[Session] Evicted cached feed {evicted_id}")
        return feed

    # =========================================================================
    # Live channel
    # =========================================================================

    async def _on_reconnected(self, _payload: Any) -> None:
        """Refetch what the channel may have missed while it was down."""
        try:
            await self.refresh_rooms(force=True)
            feed = self.open_feed
            if feed is not None:
                await feed.load_page(1)
        except MessagingApiError as e:
            # The next explicit refresh or open_room retries
            logger.warning(f"[Session] Gap fill after reconnect failed: {e.to_dict()}")
