"""Exception hierarchy for the real-time hub.

None of these are fatal to the process: each one ends, at worst, a single
connection.
"""

from typing import Optional

from src.realtime.config import CloseCode


class RealtimeError(Exception):
    """Base exception for all hub errors.

    Carries the WebSocket close code the session should end with, so a
    single handler in the session loop can translate any subclass into a
    close frame.
    """

    close_code: CloseCode = CloseCode.GOING_AWAY

    def __init__(self, message: str, close_code: Optional[CloseCode] = None):
        super().__init__(message)
        self.message = message
        if close_code is not None:
            self.close_code = close_code


class AuthRejected(RealtimeError):
    """Missing, invalid or expired credential on the upgrade request."""

    close_code = CloseCode.POLICY_VIOLATION

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message)


class ConnectionLimitExceeded(AuthRejected):
    """The user already owns the maximum number of open connections."""

    def __init__(self, user_id: str, limit: int):
        super().__init__(f"Too many connections for user {user_id} (limit {limit})")
        self.user_id = user_id
        self.limit = limit


class TransientSendFailure(RealtimeError):
    """A write failed on a socket the registry still considered open."""

    def __init__(self, connection_id: str, cause: Optional[BaseException] = None):
        super().__init__(f"Send failed on connection {connection_id}: {cause}")
        self.connection_id = connection_id
        self.cause = cause


class MalformedFrame(RealtimeError):
    """An inbound frame could not be parsed into a typed JSON object."""

    close_code = CloseCode.INVALID_PAYLOAD

    def __init__(self, message: str = "Malformed frame", close_code: Optional[CloseCode] = None):
        super().__init__(message, close_code)
