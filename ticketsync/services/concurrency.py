"""Optimistic concurrency for single-ticket writes."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from ticketsync.core.logging import log_info
from ticketsync.repositories import tickets as tickets_repo


class UpdateStatus(str, Enum):
    SUCCESS = "success"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


@dataclass(slots=True, frozen=True)
class UpdateOutcome:
    """Result of a guarded write; ``ticket`` is the fresh row after a success."""

    status: UpdateStatus
    ticket: dict[str, Any] | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is UpdateStatus.SUCCESS


class ConcurrencyGuard:
    """Write a ticket only if nobody else changed it since ``expected_version`` was read."""

    def __init__(self, tickets=tickets_repo) -> None:
        self._tickets = tickets

    async def update(self, ticket_id: int, expected_version: int, **fields: Any) -> UpdateOutcome:
        written = await self._tickets.update_ticket_if_version(
            ticket_id, expected_version, **fields
        )
        current = await self._tickets.get_ticket(ticket_id)
        if written:
            if current is None:
                return UpdateOutcome(UpdateStatus.NOT_FOUND)
            return UpdateOutcome(UpdateStatus.SUCCESS, current)
        if current is None:
            return UpdateOutcome(UpdateStatus.NOT_FOUND)
        log_info(
            "Ticket version conflict",
            ticket_id=ticket_id,
            expected_version=expected_version,
            current_version=current.get("version"),
        )
        return UpdateOutcome(UpdateStatus.CONFLICT, current)
