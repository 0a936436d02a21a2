from __future__ import annotations

from enum import Enum


class TicketType(str, Enum):
    """Kind of work a ticket describes."""

    BUG = "Bug"
    FEATURE = "Feature"


class Priority(str, Enum):
    """Ticket urgency, ordered from most to least urgent."""

    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class Status(str, Enum):
    """Lifecycle position of a ticket."""

    UNASSIGNED = "Unassigned"
    WAITING_OPERATOR = "WaitingOperator"
    WAITING_USER = "WaitingUser"
    CLOSED = "Closed"


class UserType(str, Enum):
    USER = "User"
    OPERATOR = "Operator"
    ADMIN = "Admin"


STAFF_TYPES: frozenset[UserType] = frozenset({UserType.OPERATOR, UserType.ADMIN})
