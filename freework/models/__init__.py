"""Models package exports."""

from freework.models.auth import (
    AuthResult,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenPayload,
    parse_auth_response,
)
from freework.models.message import (
    Conversation,
    Message,
    MessageAttachment,
    MessageNotification,
    MessageType,
    ReadReceipt,
    TypingIndicator,
)
from freework.models.realtime import ConnectionState
from freework.models.user import Session, User, UserRole

__all__ = [
    "AuthResult",
    "ConnectionState",
    "Conversation",
    "LoginRequest",
    "Message",
    "MessageAttachment",
    "MessageNotification",
    "MessageType",
    "ReadReceipt",
    "RefreshRequest",
    "RegisterRequest",
    "Session",
    "TokenPayload",
    "TypingIndicator",
    "User",
    "UserRole",
    "parse_auth_response",
]
