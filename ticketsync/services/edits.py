"""Append-only audit trail of ticket changes."""
from __future__ import annotations

from typing import Any, Mapping

from ticketsync.repositories import edits as edits_repo
from ticketsync.schemas.enums import Status

TICKET_CREATED = "TICKET_CREATED_EDIT"
TICKET_AUTO_ASSIGNED = "TICKET_AUTO_ASSIGNED_EDIT"
TICKET_EDITED = "TICKET_EDITED_EDIT"
TICKET_ASSIGNED = "TICKET_ASSIGNED_EDIT"
TICKET_UNASSIGNED = "TICKET_UNASSIGNED_EDIT"


class EditRecorder:
    def __init__(self, edits=edits_repo) -> None:
        self._edits = edits

    async def record_creation(
        self,
        ticket: Mapping[str, Any],
        creator_id: int,
        auto_operator_id: int | None = None,
    ) -> list[dict[str, Any]]:
        ticket_id = int(ticket["id"])
        rows = [
            await self._edits.create_edit(
                ticket_id=ticket_id,
                user_id=creator_id,
                description=TICKET_CREATED,
                old_status=Status.UNASSIGNED,
                new_status=Status.UNASSIGNED,
            )
        ]
        if auto_operator_id:
            rows.append(
                await self._edits.create_edit(
                    ticket_id=ticket_id,
                    user_id=auto_operator_id,
                    description=TICKET_AUTO_ASSIGNED,
                    old_status=Status.UNASSIGNED,
                    new_status=Status.WAITING_OPERATOR,
                )
            )
        return rows

    async def record_edit(
        self, ticket: Mapping[str, Any], editor_id: int, old_status: Status | str
    ) -> dict[str, Any]:
        return await self._edits.create_edit(
            ticket_id=int(ticket["id"]),
            user_id=editor_id,
            description=TICKET_EDITED,
            old_status=old_status,
            new_status=ticket["status"],
        )

    async def record_operator_edit(
        self,
        ticket: Mapping[str, Any],
        editor_id: int,
        old_status: Status | str,
    ) -> dict[str, Any]:
        operator_id = ticket.get("operator_user_id")
        if not operator_id:
            return await self._edits.create_edit(
                ticket_id=int(ticket["id"]),
                user_id=editor_id,
                description=TICKET_UNASSIGNED,
                old_status=old_status,
                new_status=ticket["status"],
            )
        return await self._edits.create_edit(
            ticket_id=int(ticket["id"]),
            user_id=operator_id,
            description=TICKET_ASSIGNED,
            old_status=old_status,
            new_status=ticket["status"],
        )
