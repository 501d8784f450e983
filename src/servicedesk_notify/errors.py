"""Exceptions raised by the notification pipeline."""


class NotificationError(Exception):
    """Base class for notification pipeline errors."""


class FanOutWriteError(NotificationError):
    """Committing the per-recipient notification records failed.

    No record from the batch was written, so the event must not be pushed.
    """


class PushGatewayError(NotificationError):
    """The push delivery gateway could not be reached or returned a bad response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
