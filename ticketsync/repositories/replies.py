from __future__ import annotations

from typing import Any

from ticketsync.core.database import db
from ticketsync.repositories._rows import coerce_ints, make_aware

ReplyRecord = dict[str, Any]


def _normalise_reply(row: dict[str, Any]) -> ReplyRecord:
    record = dict(row)
    coerce_ints(record, ("id", "ticket_id", "author_user_id"))
    record["created_at"] = make_aware(record.get("created_at"))
    return record


async def create_reply(*, ticket_id: int, author_user_id: int, message: str) -> ReplyRecord:
    reply_id = await db.execute_returning_lastrowid(
        "INSERT INTO replies (ticket_id, author_user_id, message) VALUES (%s, %s, %s)",
        (ticket_id, author_user_id, message),
    )
    row = await db.fetch_one("SELECT * FROM replies WHERE id = %s", (reply_id,))
    if row:
        return _normalise_reply(row)
    return _normalise_reply(
        {
            "id": reply_id,
            "ticket_id": ticket_id,
            "author_user_id": author_user_id,
            "message": message,
            "created_at": None,
        }
    )


async def list_replies(ticket_id: int) -> list[ReplyRecord]:
    rows = await db.fetch_all(
        "SELECT * FROM replies WHERE ticket_id = %s ORDER BY created_at, id",
        (ticket_id,),
    )
    return [_normalise_reply(row) for row in rows]
