"""Async HTTP client for the external messaging API.

Wraps the REST endpoints the messaging core consumes:
    - GET    /message-room/get-message-rooms?type={role}&userId={id}
    - PATCH  /message-room/{roomId}/accept
    - GET    /message/{roomId}?page={n}&limit={n}
    - POST   /message                  (multipart: roomId, userId, message, clientTempId?, files)
    - PATCH  /message/{messageId}
    - DELETE /message/{messageId}

Every endpoint answers with an envelope ``{success, message, data, meta?}``.
Failures are raised as :class:`MessagingApiError` subclasses and are never
retried here; retry policy belongs to the caller.
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Type, TypeVar

import httpx
from pydantic import ValidationError

from pitchchat.config import AppSettings
from pitchchat.messages.schemas import Message, MessagePage, OutgoingFile, PageMeta
from pitchchat.rooms.schemas import MessageRoom

from .errors import FetchError, MessagingApiError, MutationError, SendError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MessagingApiClient:
    """Thin async client over the messaging REST endpoints.

    Args:
        base_url: API root, e.g. ``https://api.example.com/api/v1``.
        token: Optional bearer token sent on every request.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests inject ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "MessagingApiClient":
        return cls(
            base_url=settings.api.base_url,
            token=settings.secrets.api.token,
            timeout=settings.api.timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "MessagingApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # -----------------------------------------------------------------------
    # Rooms
    # -----------------------------------------------------------------------

    async def get_message_rooms(self, user_id: str, role: str) -> List[MessageRoom]:
        """Fetch every room the user participates in under the given role."""
        path = "/message-room/get-message-rooms"
        envelope = await self._request(
            "GET",
            path,
            FetchError,
            params={"type": role, "userId": user_id},
        )
        return _parse(
            lambda: [MessageRoom.model_validate(item) for item in envelope.get("data") or []],
            "GET", path, FetchError,
        )

    async def accept_room(self, room_id: str) -> Optional[MessageRoom]:
        """Accept a pending conversation.

        Returns:
            The updated room when the API echoes it back, None otherwise.
        """
        path = f"/message-room/{room_id}/accept"
        envelope = await self._request("PATCH", path, MutationError)
        data = envelope.get("data")
        if not (isinstance(data, dict) and _is_full_room(data)):
            return None
        return _parse(lambda: MessageRoom.model_validate(data), "PATCH", path, MutationError)

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------

    async def get_messages(self, room_id: str, page: int, limit: int) -> MessagePage:
        """Fetch one page of a room's history."""
        path = f"/message/{room_id}"
        envelope = await self._request(
            "GET",
            path,
            FetchError,
            params={"page": page, "limit": limit},
        )
        return _parse(
            lambda: MessagePage(
                messages=[Message.model_validate(item) for item in envelope.get("data") or []],
                meta=PageMeta.model_validate(envelope.get("meta") or {"page": page, "limit": limit}),
            ),
            "GET", path, FetchError,
        )

    async def create_message(
        self,
        room_id: str,
        sender_id: str,
        body: Optional[str] = None,
        files: Sequence[OutgoingFile] = (),
        client_temp_id: Optional[str] = None,
    ) -> Message:
        """Submit a new message as multipart form data.

        ``client_temp_id`` is forwarded so the live echo of this message can
        be matched to the sender's optimistic entry.
        """
        form = {"roomId": room_id, "userId": sender_id, "message": body or ""}
        if client_temp_id:
            form["clientTempId"] = client_temp_id
        upload = [
            ("files", (f.filename, f.content, f.content_type)) for f in files
        ]
        envelope = await self._request(
            "POST",
            "/message",
            SendError,
            data=form,
            files=upload or None,
        )
        return _parse(lambda: Message.model_validate(envelope.get("data")), "POST", "/message", SendError)

    async def update_message(self, message_id: str, body: str) -> Message:
        path = f"/message/{message_id}"
        envelope = await self._request(
            "PATCH",
            path,
            MutationError,
            json={"message": body},
        )
        return _parse(lambda: Message.model_validate(envelope.get("data")), "PATCH", path, MutationError)

    async def delete_message(self, message_id: str) -> None:
        await self._request("DELETE", f"/message/{message_id}", MutationError)

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        error_cls: Type[MessagingApiError],
        **kwargs: Any,
    ) -> Dict[str, Any]:
        """Send a request and unwrap the response envelope.

        Raises:
            MessagingApiError: ``error_cls`` on transport errors, non-2xx
                statuses, undecodable bodies and ``success: false`` envelopes.
        """
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning(f"[Api] {method} {path} failed: {exc}")
            raise error_cls(
                f"Request failed: {exc}", details={"method": method, "path": path}
            ) from exc

        try:
            envelope = response.json()
        except ValueError:
            envelope = {}
        if not isinstance(envelope, dict):
            envelope = {"data": envelope}

        if response.is_error or envelope.get("success") is False:
            message = envelope.get("message") or response.reason_phrase or "Request failed"
            logger.warning(f"[Api] {method} {path} -> {response.status_code}: {message}")
            raise error_cls(
                message,
                status_code=response.status_code,
                details={"method": method, "path": path},
            )

        return envelope


def _is_full_room(data: Dict[str, Any]) -> bool:
    return any(key in data for key in ("participantA", "userId"))


def _parse(build: Callable[[], T], method: str, path: str, error_cls: Type[MessagingApiError]) -> T:
    """Run ``build`` over a decoded envelope, reporting schema mismatches as ``error_cls``."""
    try:
        return build()
    except ValidationError as exc:
        logger.warning(f"[Api] {method} {path} returned an unexpected payload: {exc.error_count()} errors")
        raise error_cls(
            f"Unexpected response from {path}",
            details={"method": method, "path": path, "error_count": exc.error_count()},
        ) from exc
