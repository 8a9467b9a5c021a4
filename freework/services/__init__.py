"""Services package exports."""

from freework.services.logging_service import configure_logging, get_logger
from freework.services.realtime_channel import RealtimeChannel
from freework.services.session_manager import AuthState, SessionManager

__all__ = [
    "AuthState",
    "RealtimeChannel",
    "SessionManager",
    "configure_logging",
    "get_logger",
]
