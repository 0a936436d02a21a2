from __future__ import annotations

from fastapi import HTTPException, status

from ticketsync.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    TicketSyncError,
    ValidationError,
)

_STATUS_BY_ERROR: tuple[tuple[type[TicketSyncError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
)


def to_http_exception(exc: TicketSyncError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.message or str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Unexpected error")
