from __future__ import annotations

from typing import Any

from ticketsync.core.database import db
from ticketsync.repositories._rows import coerce_ints, make_aware

EditRecord = dict[str, Any]


def _normalise_edit(row: dict[str, Any]) -> EditRecord:
    record = dict(row)
    coerce_ints(record, ("id", "ticket_id", "user_id"))
    record["created_at"] = make_aware(record.get("created_at"))
    return record


async def create_edit(
    *,
    ticket_id: int,
    user_id: int,
    description: str,
    old_status: str,
    new_status: str,
) -> EditRecord:
    old_value = getattr(old_status, "value", old_status)
    new_value = getattr(new_status, "value", new_status)
    edit_id = await db.execute_returning_lastrowid(
        """
        INSERT INTO edits (ticket_id, user_id, description, old_status, new_status)
        VALUES (%s, %s, %s, %s, %s)
        """,
        (ticket_id, user_id, description, old_value, new_value),
    )
    return {
        "id": edit_id,
        "ticket_id": ticket_id,
        "user_id": user_id,
        "description": description,
        "old_status": old_value,
        "new_status": new_value,
        "created_at": None,
    }


async def list_edits_for_ticket(ticket_id: int) -> list[EditRecord]:
    rows = await db.fetch_all(
        "SELECT * FROM edits WHERE ticket_id = %s ORDER BY created_at, id",
        (ticket_id,),
    )
    return [_normalise_edit(row) for row in rows]
