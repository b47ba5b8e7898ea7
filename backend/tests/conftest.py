"""Shared test fixtures and fakes for the messaging core tests."""
import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Sequence
from unittest.mock import MagicMock

import pytest

from pitchchat.api.client import MessagingApiClient
from pitchchat.messages.schemas import Message, MessageFile, MessagePage, NewMessageEvent, PageMeta
from pitchchat.rooms.schemas import MessageRoom, Participant, ParticipantRole

# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def ts(hour: int, minute: int = 0, second: int = 0) -> datetime:
    """Aware UTC timestamp on a fixed day."""
    return datetime(2025, 1, 6, hour, minute, second, tzinfo=timezone.utc)


def make_message(
    message_id: str,
    created_at: datetime,
    room_id: str = "r1",
    sender_id: str = "cand-1",
    body: Optional[str] = "hello",
    **extra: Any,
) -> Message:
    return Message(
        id=message_id,
        roomId=room_id,
        senderId=sender_id,
        body=body,
        createdAt=created_at,
        **extra,
    )


def make_event(
    room_id: str,
    message_id: str,
    created_at: datetime,
    body: Optional[str] = "hi",
    attachments: Sequence[MessageFile] = (),
    sender_id: str = "rec-1",
    client_temp_id: Optional[str] = None,
) -> NewMessageEvent:
    return NewMessageEvent(
        roomId=room_id,
        messageId=message_id,
        senderId=sender_id,
        body=body,
        attachments=list(attachments),
        createdAt=created_at,
        clientTempId=client_temp_id,
    )


def make_room(
    room_id: str,
    last_activity_at: datetime,
    candidate: str = "Alice",
    counterpart: str = "Bob",
    accepted: bool = True,
    preview: str = "",
) -> MessageRoom:
    return MessageRoom(
        id=room_id,
        participantA=Participant(id="cand-1", name=candidate, role=ParticipantRole.CANDIDATE),
        participantB=Participant(
            id=f"rec-{room_id}", name=counterpart, role=ParticipantRole.RECRUITER
        ),
        lastMessagePreview=preview,
        lastActivityAt=last_activity_at,
        accepted=accepted,
    )


def make_page(
    messages: List[Message],
    current_page: int = 1,
    total_pages: int = 1,
) -> MessagePage:
    return MessagePage(
        messages=messages,
        meta=PageMeta(
            currentPage=current_page,
            totalPages=total_pages,
            totalItems=len(messages),
            itemsPerPage=20,
        ),
    )


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll ``predicate`` on the running loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


# ---------------------------------------------------------------------------
# Live channel fakes
# ---------------------------------------------------------------------------

_CLOSE = object()
_DROP = object()


class FakeConnection:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self) -> None:
        self.incoming: "asyncio.Queue[Any]" = asyncio.Queue()
        self.sent: List[dict] = []

    async def __aenter__(self) -> "FakeConnection":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None

    def __aiter__(self) -> "FakeConnection":
        return self

    async def __anext__(self) -> Any:
        item = await self.incoming.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if item is _DROP:
            raise OSError("connection reset by peer")
        return item

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    def push(self, event_type: str, data: Any) -> None:
        self.incoming.put_nowait(json.dumps({"type": event_type, "data": data}, default=str))

    def push_raw(self, raw: Any) -> None:
        self.incoming.put_nowait(raw)

    def close(self) -> None:
        self.incoming.put_nowait(_CLOSE)

    def drop(self) -> None:
        self.incoming.put_nowait(_DROP)

    def sent_types(self) -> List[str]:
        return [frame["type"] for frame in self.sent]


class _FailingConnect:
    def __init__(self, error: BaseException) -> None:
        self.error = error

    async def __aenter__(self) -> Any:
        raise self.error

    async def __aexit__(self, *exc_info: Any) -> None:
        return None


class FakeConnector:
    """Connection factory replaying scripted outcomes, then fresh connections."""

    def __init__(self, outcomes: Sequence[Any] = ()) -> None:
        self._outcomes = list(outcomes)
        self.calls: List[tuple] = []
        self.connections: List[FakeConnection] = []

    def __call__(self, url: str, **kwargs: Any) -> Any:
        self.calls.append((url, kwargs))
        outcome = self._outcomes.pop(0) if self._outcomes else FakeConnection()
        if isinstance(outcome, BaseException):
            return _FailingConnect(outcome)
        self.connections.append(outcome)
        return outcome

    @property
    def latest(self) -> FakeConnection:
        return self.connections[-1]


class RecordingSleep:
    """Replacement for asyncio.sleep that records delays and only yields."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def api():
    """MessagingApiClient mock; async methods are AsyncMocks."""
    return MagicMock(spec=MessagingApiClient)


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
