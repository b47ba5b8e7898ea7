"""Live channel client: one persistent push connection per session.

The client owns the transport and nothing else. It decodes incoming frames
and fans them out to subscribers; business state lives in the room store and
the open message feed, which subscribe through :meth:`subscribe`.

Wire format (JSON text frames, both directions)::

    {"type": "<event>", "data": <payload>}

Inbound events:
    - ``newMessage``: a message document, validated into NewMessageEvent
    - ``msg_count``: number of rooms with unread messages

Outbound frames:
    - ``joinNotification`` ``{userId}`` on every (re)connect
    - ``joinRoom`` / ``leaveRoom`` ``{roomId}`` when the open room changes

State machine::

    DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED
                 -> RECONNECTING -> CONNECTED

Connection loss is never raised to callers. The client reconnects with
exponential backoff and publishes ``reconnected`` so consumers can refetch
whatever was missed while the channel was down.
"""
import asyncio
import inspect
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import WebSocketException

from pitchchat.config import AppSettings
from pitchchat.messages.schemas import NewMessageEvent

logger = logging.getLogger(__name__)

# =============================================================================
# Event names
# =============================================================================

EVENT_NEW_MESSAGE = "newMessage"
EVENT_MSG_COUNT = "msg_count"

# Published locally after a successful reconnect (never sent by the server)
EVENT_RECONNECTED = "reconnected"

FRAME_JOIN_NOTIFICATION = "joinNotification"
FRAME_JOIN_ROOM = "joinRoom"
FRAME_LEAVE_ROOM = "leaveRoom"

Handler = Callable[[Any], Optional[Awaitable[None]]]


class ConnectionState(str, Enum):
    """Lifecycle of the push connection.

    Attributes:
        DISCONNECTED: No connection; events cannot be received.
        CONNECTING: First connection attempt in progress.
        CONNECTED: Receiving and dispatching events.
        RECONNECTING: Re-establishing a connection that was lost.
    """
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class LiveChannelClient:
    """Dispatcher over a single reconnecting WebSocket connection.

    Args:
        url: WebSocket endpoint.
        user_id: Session user announced with ``joinNotification``.
        token: Optional bearer token sent in the handshake.
        initial_backoff: First reconnect delay in seconds.
        max_backoff: Upper bound for the reconnect delay.
        backoff_factor: Multiplier applied after every failed attempt.
        open_timeout: Handshake timeout in seconds.
        connect: Connection factory with the signature of
            ``websockets.asyncio.client.connect``; tests inject fakes.
        sleep: Coroutine used to wait between attempts.
    """

    def __init__(
        self,
        url: str,
        user_id: Optional[str] = None,
        token: Optional[str] = None,
        initial_backoff: float = 0.5,
        max_backoff: float = 30.0,
        backoff_factor: float = 2.0,
        open_timeout: float = 10.0,
        connect: Callable[..., Any] = ws_connect,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.url = url
        self.user_id = user_id
        self._token = token
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.backoff_factor = backoff_factor
        self.open_timeout = open_timeout
        self._connect = connect
        self._sleep = sleep

        self._handlers: Dict[str, List[Handler]] = {}
        self._state = ConnectionState.DISCONNECTED
        self._connected = asyncio.Event()
        self._ws: Optional[Any] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._ever_connected = False

        # Single-slot: the room whose messages the server should push
        self._room_id: Optional[str] = None

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        user_id: Optional[str] = None,
        connect: Callable[..., Any] = ws_connect,
    ) -> "LiveChannelClient":
        live = settings.live_channel
        return cls(
            url=live.url,
            user_id=user_id,
            token=settings.secrets.api.token,
            initial_backoff=live.initial_backoff_seconds,
            max_backoff=live.max_backoff_seconds,
            backoff_factor=live.backoff_factor,
            open_timeout=live.open_timeout_seconds,
            connect=connect,
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def room_id(self) -> Optional[str]:
        return self._room_id

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, event: str, handler: Handler) -> None:
        """Register ``handler`` for ``event``; handlers may be sync or async."""
        handlers = self._handlers.setdefault(event, [])
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def subscriber_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the background connection loop."""
        if self._running:
            logger.warning("[LiveChannel] Already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"[LiveChannel] Started for {self.url}")

    async def stop(self) -> None:
        """Stop the loop and close the connection."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._ws = None
        self._connected.clear()
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("[LiveChannel] Stopped")

    async def wait_until_connected(self, timeout: Optional[float] = None) -> bool:
        """Wait for the CONNECTED state; returns False on timeout."""
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    # =========================================================================
    # Room membership
    # =========================================================================

    async def join_room(self, room_id: str) -> None:
        """Make ``room_id`` the open room; rejoined automatically after reconnect."""
        self._room_id = room_id
        await self._send(FRAME_JOIN_ROOM, {"roomId": room_id})

    async def leave_room(self, room_id: str) -> None:
        if self._room_id == room_id:
            self._room_id = None
        await self._send(FRAME_LEAVE_ROOM, {"roomId": room_id})

    # =========================================================================
    # Connection loop
    # =========================================================================

    async def _run(self) -> None:
        backoff = self.initial_backoff
        while self._running:
            self._set_state(
                ConnectionState.RECONNECTING if self._ever_connected else ConnectionState.CONNECTING
            )
            try:
                async with self._connect(
                    self.url,
                    additional_headers=self._headers(),
                    open_timeout=self.open_timeout,
                ) as ws:
                    reconnected = self._ever_connected
                    self._ws = ws
                    self._ever_connected = True
                    backoff = self.initial_backoff
                    self._set_state(ConnectionState.CONNECTED)
                    self._connected.set()

                    await self._on_open(reconnected)
                    async for raw in ws:
                        await self._handle_frame(raw)
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                logger.info(f"[LiveChannel] Connection lost: {e}")
            except Exception as e:
                # Keep reconnecting; only stop() ends the loop
                logger.error(f"[LiveChannel] Unexpected connection error: {e}", exc_info=True)
            finally:
                self._ws = None
                self._connected.clear()

            if not self._running:
                break
            self._set_state(ConnectionState.DISCONNECTED)
            logger.debug(f"[LiveChannel] Reconnecting in {backoff:.1f}s")
            await self._sleep(backoff)
            backoff = min(backoff * self.backoff_factor, self.max_backoff)

    async def _on_open(self, reconnected: bool) -> None:
        if self.user_id:
            await self._send(FRAME_JOIN_NOTIFICATION, {"userId": self.user_id})
        if self._room_id:
            await self._send(FRAME_JOIN_ROOM, {"roomId": self._room_id})
        if reconnected:
            logger.info("[LiveChannel] Reconnected")
            await self._emit(EVENT_RECONNECTED, None)

    def _headers(self) -> Dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    def _set_state(self, state: ConnectionState) -> None:
        if state != self._state:
            logger.debug(f"[LiveChannel] {self._state.value} -> {state.value}")
            self._state = state

    async def _send(self, frame_type: str, data: Dict[str, Any]) -> None:
        ws = self._ws
        if ws is None:
            # Sent on the next connect by _on_open
            return
        try:
            await ws.send(json.dumps({"type": frame_type, "data": data}))
        except WebSocketException as e:
            logger.debug(f"[LiveChannel] Could not send {frame_type}: {e}")

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def _handle_frame(self, raw: Any) -> None:
        """Decode one frame and dispatch it; malformed frames are dropped."""
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"[LiveChannel] Dropping undecodable frame: {raw!r:.200}")
            return
        if not isinstance(frame, dict) or not frame.get("type"):
            logger.warning(f"[LiveChannel] Dropping frame without type: {frame!r:.200}")
            return

        event_type = frame["type"]
        data = frame.get("data")

        if event_type == EVENT_NEW_MESSAGE:
            try:
                event = NewMessageEvent.model_validate(data)
            except ValidationError as e:
                logger.warning(f"[LiveChannel] Dropping malformed newMessage: {e}")
                return
            await self._emit(EVENT_NEW_MESSAGE, event)
        elif event_type == EVENT_MSG_COUNT:
            try:
                count = int(data)
            except (TypeError, ValueError):
                logger.warning(f"[LiveChannel] Dropping malformed msg_count: {data!r}")
                return
            await self._emit(EVENT_MSG_COUNT, count)
        else:
            logger.debug(f"[LiveChannel] Ignoring event type {event_type}")

    async def _emit(self, event: str, payload: Any) -> None:
        # Copy: handlers may unsubscribe while being dispatched
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[LiveChannel] {event} handler failed: {e}", exc_info=True)
