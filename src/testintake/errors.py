"""Error taxonomy for the ingestion pipeline.

Every error carries the HTTP status it maps to. The exception handlers
registered in ``testintake.main`` render them as ``{"status", "message"}``.
"""

from fastapi import status


class IngestError(Exception):
    """Base class for errors reported to the caller."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class Unauthenticated(IngestError):
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(IngestError):
    status_code = status.HTTP_403_FORBIDDEN


class InvalidArgument(IngestError):
    status_code = status.HTTP_400_BAD_REQUEST


class Conflict(IngestError):
    status_code = status.HTTP_409_CONFLICT


class NotFound(IngestError):
    status_code = status.HTTP_404_NOT_FOUND


class InvalidState(IngestError):
    """The record is not in a state that allows the operation."""

    status_code = status.HTTP_400_BAD_REQUEST


class TooManyRequests(IngestError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, message: str, retry_after: int | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamStorageFailure(IngestError):
    """The object store was unreachable or rejected an operation."""

    status_code = status.HTTP_502_BAD_GATEWAY
