"""Exception hierarchy for the session and realtime layers."""

from typing import Optional


class FreeworkError(Exception):
    """Base class for all client errors."""


class AuthenticationError(FreeworkError):
    """Credentials were rejected by the server (user-correctable)."""


class SessionExpiredError(FreeworkError):
    """The session can no longer be renewed; the client has been logged out."""


class TransientNetworkError(FreeworkError):
    """A request failed in transport or with a server-side error.

    Attributes:
        status_code: HTTP status when the server answered, None for transport failures
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ResponseShapeError(FreeworkError):
    """The server returned a payload matching none of the known shapes."""


class TokenDecodeError(FreeworkError):
    """A bearer token could not be decoded."""


class ConnectionUnavailableError(FreeworkError):
    """The realtime channel exhausted its reconnect budget.

    Published on the channel's ``unavailable`` stream, never raised.
    """

    def __init__(self, attempts: int):
        super().__init__(f"Realtime connection unavailable after {attempts} attempts")
        self.attempts = attempts
