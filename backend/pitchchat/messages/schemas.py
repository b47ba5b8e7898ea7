"""Pydantic models for messages, message pages and live events.

Messages within a room are totally ordered by ``(createdAt, id)``. Fields keep
the API's camelCase names; document-shaped payloads (``_id``, ``userId``,
``message``, ``file``) are accepted through validation aliases.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from pitchchat.utils import as_utc


class DeliveryStatus(str, Enum):
    """Lifecycle of a message entry held by a feed.

    Attributes:
        PENDING: Composed locally, not yet confirmed by the API.
        CONFIRMED: Carries a server-assigned id and timestamp.
        ROLLED_BACK: The send failed and the entry was withdrawn.
    """
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


class MessageFile(BaseModel):
    """Opaque reference to an uploaded attachment."""
    filename: str = Field(default="", description="Original file name")
    url: str = Field(default="", description="Download URL (empty until uploaded)")
    uploadedAt: Optional[datetime] = Field(default=None, description="Upload time")


def _sender_id(value: Any) -> Any:
    # The API either returns a bare user id or a populated user document
    if isinstance(value, dict):
        return value.get("_id") or value.get("id")
    return value


def _sender_name(data: Any) -> Any:
    if isinstance(data, dict) and not data.get("senderName"):
        sender = data.get("userId")
        if isinstance(sender, dict) and sender.get("name"):
            return {**data, "senderName": sender["name"]}
    return data


class Message(BaseModel):
    """A single message in a room.

    Attributes:
        id: Server-assigned id; for pending entries, the client temp id.
        roomId: Owning room.
        senderId: Participant who sent the message.
        senderName: Sender display name, when the API populated it.
        body: Optional text.
        attachments: Ordered attachment references.
        createdAt: Server-assigned timestamp (local time for pending entries).
        updatedAt: Last server-side modification, used to pick the newer copy.
        clientTempId: Set only on locally composed entries and their echoes.
        status: Delivery lifecycle state.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., validation_alias=AliasChoices("id", "_id"), description="Message ID")
    roomId: str = Field(..., description="Room ID this message belongs to")
    senderId: str = Field(
        ...,
        validation_alias=AliasChoices("senderId", "userId"),
        description="User ID of the sender",
    )
    senderName: Optional[str] = Field(default=None, description="Display name of the sender")
    body: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("body", "message"),
        description="Message text",
    )
    attachments: List[MessageFile] = Field(
        default_factory=list,
        validation_alias=AliasChoices("attachments", "file"),
        description="Attached files",
    )
    createdAt: datetime = Field(..., description="Creation timestamp")
    updatedAt: Optional[datetime] = Field(default=None, description="Last update timestamp")
    clientTempId: Optional[str] = Field(default=None, description="Client temporary ID")
    status: DeliveryStatus = Field(default=DeliveryStatus.CONFIRMED, description="Delivery state")

    @model_validator(mode="before")
    @classmethod
    def populate_sender_name(cls, data: Any) -> Any:
        return _sender_name(data)

    @field_validator("senderId", mode="before")
    @classmethod
    def unwrap_sender(cls, value: Any) -> Any:
        return _sender_id(value)

    @field_validator("attachments", mode="before")
    @classmethod
    def null_attachments(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("createdAt", "updatedAt")
    @classmethod
    def normalise_timestamp(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        return (self.createdAt, self.id)

    @property
    def is_pending(self) -> bool:
        return self.status == DeliveryStatus.PENDING


class PageMeta(BaseModel):
    """Pagination metadata returned with a message page."""
    model_config = ConfigDict(populate_by_name=True)

    currentPage: int = Field(default=1, validation_alias=AliasChoices("currentPage", "page"))
    totalPages: int = Field(default=1)
    totalItems: int = Field(default=0, validation_alias=AliasChoices("totalItems", "total"))
    itemsPerPage: int = Field(default=0, validation_alias=AliasChoices("itemsPerPage", "limit"))

    @property
    def has_next(self) -> bool:
        return self.currentPage < self.totalPages


class MessagePage(BaseModel):
    """One page of historical messages as returned by the API."""
    messages: List[Message] = Field(default_factory=list)
    meta: PageMeta = Field(default_factory=PageMeta)


class NewMessageEvent(BaseModel):
    """Normalized ``newMessage`` push event.

    The live channel delivers either this flat shape or the created message
    document itself; both validate into the same model.
    """
    model_config = ConfigDict(populate_by_name=True)

    roomId: str
    messageId: str = Field(..., validation_alias=AliasChoices("messageId", "_id", "id"))
    senderId: str = Field(..., validation_alias=AliasChoices("senderId", "userId"))
    senderName: Optional[str] = None
    body: Optional[str] = Field(default=None, validation_alias=AliasChoices("body", "message"))
    attachments: List[MessageFile] = Field(
        default_factory=list,
        validation_alias=AliasChoices("attachments", "file"),
    )
    createdAt: datetime
    updatedAt: Optional[datetime] = None
    clientTempId: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def populate_sender_name(cls, data: Any) -> Any:
        return _sender_name(data)

    @field_validator("senderId", mode="before")
    @classmethod
    def unwrap_sender(cls, value: Any) -> Any:
        return _sender_id(value)

    @field_validator("attachments", mode="before")
    @classmethod
    def null_attachments(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("createdAt", "updatedAt")
    @classmethod
    def normalise_timestamp(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None

    @classmethod
    def from_message(cls, message: Message) -> "NewMessageEvent":
        return cls(
            roomId=message.roomId,
            messageId=message.id,
            senderId=message.senderId,
            senderName=message.senderName,
            body=message.body,
            attachments=list(message.attachments),
            createdAt=message.createdAt,
            updatedAt=message.updatedAt,
            clientTempId=message.clientTempId,
        )

    def to_message(self) -> Message:
        """Convert the event into a confirmed feed entry."""
        return Message(
            id=self.messageId,
            roomId=self.roomId,
            senderId=self.senderId,
            senderName=self.senderName,
            body=self.body,
            attachments=list(self.attachments),
            createdAt=self.createdAt,
            updatedAt=self.updatedAt,
            clientTempId=self.clientTempId,
        )


@dataclass
class OutgoingFile:
    """A file to upload with an outbound message.

    Attributes:
        filename: Name sent in the multipart body.
        content: Raw file bytes.
        content_type: MIME type of the content.
    """
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"
