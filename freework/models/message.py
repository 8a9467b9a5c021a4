"""Messaging models for conversations and realtime events."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field

from freework.models.user import WireModel


class MessageType(str, Enum):
    """Kinds of message content."""

    TEXT = "TEXT"
    IMAGE = "IMAGE"
    FILE = "FILE"
    SYSTEM = "SYSTEM"


class MessageAttachment(WireModel):
    """A file attached to a message."""

    id: str
    name: str
    url: str
    type: str
    size: int = Field(ge=0)


class Message(WireModel):
    """A single direct message."""

    id: Optional[str] = None
    conversation_id: str
    sender_id: str
    sender_name: str
    sender_avatar: Optional[str] = None
    receiver_id: str
    content: str
    timestamp: datetime
    read: bool = False
    type: MessageType = MessageType.TEXT
    attachments: list[MessageAttachment] = Field(default_factory=list)


class Conversation(WireModel):
    """A thread between participants, optionally tied to a job."""

    id: str
    participant_ids: list[str]
    participant_names: list[str]
    participant_avatars: Optional[list[str]] = None
    last_message: Optional[Message] = None
    unread_count: int = Field(default=0, ge=0)
    created_at: datetime
    updated_at: datetime
    job_id: Optional[str] = None
    job_title: Optional[str] = None


class TypingIndicator(WireModel):
    """Another participant started or stopped typing."""

    conversation_id: str
    user_id: str
    user_name: str
    is_typing: bool


class MessageNotification(WireModel):
    """A new message arrived, with the recipient's updated unread total."""

    conversation_id: str
    message: Message
    total_unread: int = Field(ge=0)


class ReadReceipt(WireModel):
    """A participant read a conversation up to now."""

    conversation_id: str
    reader_id: str
    read_at: Optional[datetime] = None
