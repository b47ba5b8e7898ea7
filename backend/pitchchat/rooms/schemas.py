"""Pydantic models for message rooms.

A room is a 1:1 conversation between a candidate and either a recruiter or a
company. The API may return rooms in two shapes and both are accepted:

    * normalized: ``{id, participantA, participantB, lastMessagePreview,
      lastActivityAt, accepted}``
    * document:   ``{_id, userId, recruiterId | companyId, lastMessage,
      updatedAt, messsageAccepted}`` with participants populated or bare ids
"""
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from pitchchat.utils import as_utc


class ParticipantRole(str, Enum):
    """Role a participant plays on the job board.

    Attributes:
        CANDIDATE: Job seeker; always one side of a room.
        RECRUITER: Individual recruiter contacting a candidate.
        COMPANY: Company account contacting a candidate.
    """
    CANDIDATE = "candidate"
    RECRUITER = "recruiter"
    COMPANY = "company"


# Document keys that carry a participant, and the role they imply
_DOCUMENT_PARTICIPANT_KEYS = (
    ("userId", ParticipantRole.CANDIDATE),
    ("recruiterId", ParticipantRole.RECRUITER),
    ("companyId", ParticipantRole.COMPANY),
)


class Participant(BaseModel):
    """One side of a room.

    Attributes:
        id: User identifier.
        name: Display name (empty when the API returned a bare id).
        email: Contact email, if populated.
        role: Participant role, if known.
        avatarUrl: Avatar image URL, if any.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., validation_alias=AliasChoices("id", "_id"), description="User ID")
    name: str = Field(default="", description="Display name")
    email: str = Field(default="", description="Email address")
    role: Optional[ParticipantRole] = Field(default=None, description="Participant role")
    avatarUrl: Optional[str] = Field(default=None, description="Avatar URL")

    @model_validator(mode="before")
    @classmethod
    def coerce_reference(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"id": data}
        if isinstance(data, dict) and "avatarUrl" not in data:
            avatar = data.get("avatar")
            if isinstance(avatar, dict) and avatar.get("url"):
                data = {**data, "avatarUrl": avatar["url"]}
        return data


def _participant_from_document(value: Any, role: ParticipantRole) -> Any:
    if isinstance(value, str):
        return {"id": value, "role": role}
    if isinstance(value, dict) and not value.get("role"):
        return {**value, "role": role}
    return value


class MessageRoom(BaseModel):
    """A 1:1 conversation container.

    Attributes:
        id: Stable room identifier.
        participantA: The candidate side (the room's initiator target).
        participantB: The recruiter or company side.
        lastMessagePreview: Short text shown in the room list.
        lastActivityAt: Sort key for the room list (most-recent-first).
        accepted: Whether the non-initiating participant accepted the room.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., validation_alias=AliasChoices("id", "_id"), description="Room ID")
    participantA: Participant = Field(..., description="First participant")
    participantB: Participant = Field(..., description="Second participant")
    lastMessagePreview: str = Field(
        default="",
        validation_alias=AliasChoices("lastMessagePreview", "lastMessage"),
        description="Preview of the latest message",
    )
    lastActivityAt: datetime = Field(
        ...,
        validation_alias=AliasChoices("lastActivityAt", "updatedAt", "createdAt"),
        description="Timestamp of the latest activity",
    )
    accepted: bool = Field(
        default=False,
        validation_alias=AliasChoices("accepted", "messsageAccepted", "messageAccepted"),
        description="Whether the conversation was accepted",
    )

    @model_validator(mode="before")
    @classmethod
    def normalise_document(cls, data: Any) -> Any:
        """Map the ``userId``/``recruiterId``/``companyId`` document shape."""
        if not isinstance(data, dict) or "participantA" in data:
            return data

        sides = [
            _participant_from_document(data[key], role)
            for key, role in _DOCUMENT_PARTICIPANT_KEYS
            if data.get(key)
        ]
        if len(sides) < 2:
            return data
        return {**data, "participantA": sides[0], "participantB": sides[1]}

    @field_validator("lastActivityAt")
    @classmethod
    def normalise_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("lastMessagePreview", mode="before")
    @classmethod
    def null_preview(cls, value: Any) -> Any:
        # lastMessage may be a populated message document
        if isinstance(value, dict):
            return value.get("message") or ""
        return "" if value is None else value

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.participantA.id, self.participantB.id)
