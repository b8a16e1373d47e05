from __future__ import annotations


class FilterError(Exception):
    """Base class for failures reported by the filter core."""

    status = "STATUS_UNSUCCESSFUL"


class BadRequestSize(FilterError, ValueError):
    status = "STATUS_INVALID_BUFFER_SIZE"

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Request buffer must be {expected} bytes, got {actual}")
        self.expected = expected
        self.actual = actual


class MessageLost(FilterError):
    status = "STATUS_MESSAGE_LOST"


class SharingViolation(FilterError):
    status = "STATUS_SHARING_VIOLATION"


class NotSupported(FilterError, NotImplementedError):
    status = "STATUS_NOT_IMPLEMENTED"


class NotConnected(FilterError):
    status = "STATUS_DEVICE_NOT_CONNECTED"
