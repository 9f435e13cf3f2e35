"""Pydantic schemas for chat messages and realtime events.

Field names are camelCase because the same models are serialized verbatim
into the room cache, the offline queues and the WebSocket/HTTP payloads.

Event names on the realtime channel:
    Inbound:  "chat message", "delete message", "edit message",
              "mark read", "last seen"
    Outbound: "chat message", "message deleted", "message edited",
              "message status", "error"
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, Field


class MessageStatus(str, Enum):
    """Delivery status of a message. Only ever moves forward."""
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [MessageStatus.SENT, MessageStatus.DELIVERED, MessageStatus.READ]


class EventType(str, Enum):
    CHAT_MESSAGE = "chat message"
    DELETE_MESSAGE = "delete message"
    EDIT_MESSAGE = "edit message"
    MARK_READ = "mark read"
    LAST_SEEN = "last seen"
    MESSAGE_DELETED = "message deleted"
    MESSAGE_EDITED = "message edited"
    MESSAGE_STATUS = "message status"
    ERROR = "error"


def new_message_id() -> str:
    return uuid.uuid4().hex


def direct_room_id(user_a: str, user_b: str) -> str:
    """Room key shared by both participants of a direct conversation."""
    low, high = sorted((user_a, user_b))
    return f"dm:{low}:{high}"


class SenderProfile(BaseModel):
    """Public profile fields embedded in every message snapshot."""
    id: str
    username: str
    fullname: str


class EditRecord(BaseModel):
    text: str
    editedAt: datetime


class Message(BaseModel):
    """A chat message as stored in the message log and sent to clients.

    Attributes:
        id: Opaque unique id (32 hex characters).
        roomId: Room the message belongs to.
        senderId: User id of the author.
        sender: Author's public profile at send time (None if unknown).
        recipientId: Set for direct messages only.
        content: Message text. Kept after deletion.
        type: Free-form type tag.
        status: sent, delivered or read.
        edited: True once the author has edited the text.
        editHistory: Previous texts, oldest first.
        deleted: Tombstone flag.
        deletedBy: Who deleted the message.
        createdAt: Naive UTC creation time, the ordering key.
        updatedAt: Naive UTC time of the last mutation.
    """
    id: str = Field(default_factory=new_message_id)
    roomId: str
    senderId: str
    sender: Optional[SenderProfile] = None
    recipientId: Optional[str] = None
    content: str
    type: str = "text"
    status: MessageStatus = MessageStatus.SENT
    edited: bool = False
    editHistory: List[EditRecord] = Field(default_factory=list)
    deleted: bool = False
    deletedBy: Optional[str] = None
    createdAt: datetime
    updatedAt: datetime

    def snapshot(self) -> Dict[str, Any]:
        """JSON-ready dict used for the cache, offline queues and payloads."""
        return self.model_dump(mode="json")


# =============================================================================
# Inbound realtime events
# =============================================================================


def _require_text(value: str) -> str:
    if not value or not value.strip():
        raise ValueError("must not be empty")
    return value


NonBlankStr = Annotated[str, AfterValidator(_require_text)]


class ChatMessageEvent(BaseModel):
    """Payload of an inbound "chat message" event.

    ``senderId`` may be omitted when the connection carries an identity.
    """
    senderId: Optional[str] = None
    content: NonBlankStr
    roomId: Optional[str] = None
    recipientId: Optional[str] = None
    type: str = "text"


class DeleteMessageEvent(BaseModel):
    messageId: str
    userId: str
    roomId: Optional[str] = None


class EditMessageEvent(BaseModel):
    messageId: str
    userId: str
    content: NonBlankStr
    roomId: Optional[str] = None


class MarkReadEvent(BaseModel):
    messageId: str
    userId: str
    roomId: Optional[str] = None


class LastSeenEvent(BaseModel):
    userId: Optional[str] = None
    lastMessageId: Optional[str] = None


# =============================================================================
# HTTP responses
# =============================================================================


class DeleteMessageResponse(BaseModel):
    success: bool = True
    message: str = "Message deleted"
