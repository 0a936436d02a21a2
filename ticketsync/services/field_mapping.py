"""Translation between internal ticket enums and Azure DevOps field values."""
from __future__ import annotations

from typing import Any

from ticketsync.core.errors import MappingError
from ticketsync.schemas.enums import Priority, Status, TicketType

_STATE_TO_STATUS: dict[str, Status] = {
    "to do": Status.UNASSIGNED,
    "doing": Status.WAITING_OPERATOR,
    "done": Status.CLOSED,
}

_STATUS_TO_STATE: dict[Status, str] = {
    Status.UNASSIGNED: "To Do",
    Status.WAITING_OPERATOR: "Doing",
    Status.WAITING_USER: "Doing",
    Status.CLOSED: "Done",
}

_WORK_ITEM_TYPE_TO_TYPE: dict[str, TicketType] = {
    "issue": TicketType.BUG,
    "task": TicketType.FEATURE,
    "epic": TicketType.FEATURE,
}

_TYPE_TO_WORK_ITEM_TYPE: dict[TicketType, str] = {
    TicketType.BUG: "Issue",
    TicketType.FEATURE: "Task",
}

_PRIORITY_TO_TRACKER: dict[Priority, int] = {
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


def priority_from_tracker(value: Any) -> Priority:
    """Map a tracker priority number; anything at or below 1 is High, 3 and up Low."""

    if isinstance(value, bool):
        raise MappingError(f"Unsupported priority value: {value!r}")
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        raise MappingError(f"Unsupported priority value: {value!r}") from None
    if number <= 1:
        return Priority.HIGH
    if number == 2:
        return Priority.MEDIUM
    return Priority.LOW


def status_from_tracker(state: Any) -> Status:
    key = str(state or "").strip().lower()
    try:
        return _STATE_TO_STATUS[key]
    except KeyError:
        raise MappingError(f"Unsupported work item state: {state!r}") from None


def type_from_tracker(work_item_type: Any) -> TicketType:
    key = str(work_item_type or "").strip().lower()
    try:
        return _WORK_ITEM_TYPE_TO_TYPE[key]
    except KeyError:
        raise MappingError(f"Unsupported work item type: {work_item_type!r}") from None


def priority_to_tracker(priority: Priority | str) -> int:
    return _PRIORITY_TO_TRACKER[Priority(priority)]


def status_to_tracker(status: Status | str) -> str:
    return _STATUS_TO_STATE[Status(status)]


def type_to_tracker(ticket_type: TicketType | str) -> str:
    return _TYPE_TO_WORK_ITEM_TYPE[TicketType(ticket_type)]


__all__ = [
    "priority_from_tracker",
    "status_from_tracker",
    "type_from_tracker",
    "priority_to_tracker",
    "status_to_tracker",
    "type_to_tracker",
]
