"""Message rooms: models and the session room list."""
from .schemas import MessageRoom, Participant, ParticipantRole
from .store import ATTACHMENT_PREVIEW, RoomStore

__all__ = [
    "ATTACHMENT_PREVIEW",
    "MessageRoom",
    "Participant",
    "ParticipantRole",
    "RoomStore",
]
