"""Realtime channel frames and connection states."""

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from freework.models.message import (
    Message,
    MessageNotification,
    ReadReceipt,
    TypingIndicator,
)


class ConnectionState(str, Enum):
    """Lifecycle of the realtime connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class MessageFrame(BaseModel):
    type: Literal["MESSAGE"]
    message: Message


class TypingFrame(BaseModel):
    type: Literal["TYPING"]
    typing: TypingIndicator


class NotificationFrame(BaseModel):
    type: Literal["NOTIFICATION"]
    notification: MessageNotification


class ReadReceiptFrame(BaseModel):
    type: Literal["READ_RECEIPT"]
    receipt: ReadReceipt


InboundFrame = Annotated[
    Union[MessageFrame, TypingFrame, NotificationFrame, ReadReceiptFrame],
    Field(discriminator="type"),
]

inbound_frame_adapter = TypeAdapter(InboundFrame)
