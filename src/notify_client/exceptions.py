"""Client-side errors."""


class NotifyClientError(Exception):
    """Base exception for the notification client."""


class ChannelClosed(NotifyClientError):
    """The underlying socket is gone; reads and writes will keep failing."""

    def __init__(self, message: str = "Channel closed", code: int = 1006):
        super().__init__(message)
        self.code = code


class InvalidTransition(NotifyClientError):
    """A connection state change the state machine does not allow."""

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move from {current} to {requested}")
        self.current = current
        self.requested = requested
