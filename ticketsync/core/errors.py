"""Domain error taxonomy shared by services, the webhook adapter and routes."""
from __future__ import annotations


class TicketSyncError(Exception):
    """Base class for expected, client-facing failures."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ValidationError(TicketSyncError):
    """Raised when input is malformed or violates a business rule."""


class MappingError(ValidationError):
    """Raised when a tracker value has no internal counterpart."""


class SanitizationError(ValidationError):
    """Raised when rich text cannot be reduced to plain text in time."""


class NotFoundError(TicketSyncError):
    """Raised when a referenced entity does not exist."""


class ConflictError(TicketSyncError):
    """Raised on optimistic concurrency collisions and duplicate creations."""


class ForbiddenError(TicketSyncError):
    """Raised when the caller lacks the role required for an operation."""


__all__ = [
    "TicketSyncError",
    "ValidationError",
    "MappingError",
    "SanitizationError",
    "NotFoundError",
    "ConflictError",
    "ForbiddenError",
]
