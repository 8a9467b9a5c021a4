"""Client session and realtime core for the Freework marketplace."""

from freework.context import AppContext
from freework.exceptions import (
    AuthenticationError,
    ConnectionUnavailableError,
    FreeworkError,
    ResponseShapeError,
    SessionExpiredError,
    TransientNetworkError,
)

__version__ = "0.1.0"

__all__ = [
    "AppContext",
    "AuthenticationError",
    "ConnectionUnavailableError",
    "FreeworkError",
    "ResponseShapeError",
    "SessionExpiredError",
    "TransientNetworkError",
]
