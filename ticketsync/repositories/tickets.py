from __future__ import annotations

from typing import Any, Sequence

from ticketsync.core.database import INTEGRITY_ERRORS, db, is_duplicate_key
from ticketsync.core.errors import ConflictError
from ticketsync.core.logging import log_debug, log_info
from ticketsync.repositories._rows import coerce_ints, make_aware

TicketRecord = dict[str, Any]

_UPDATABLE_COLUMNS: frozenset[str] = frozenset(
    {
        "ticket_type",
        "title",
        "description",
        "priority",
        "status",
        "platform_id",
        "operator_user_id",
        "work_item_id",
    }
)


def _normalise_ticket(row: dict[str, Any]) -> TicketRecord:
    record = dict(row)
    coerce_ints(
        record,
        (
            "id",
            "work_item_id",
            "platform_id",
            "creator_user_id",
            "operator_user_id",
            "version",
        ),
    )
    for key in ("created_at", "updated_at"):
        record[key] = make_aware(record.get(key))
    return record


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


async def create_ticket(
    *,
    ticket_type: str,
    title: str,
    description: str,
    priority: str,
    status: str,
    platform_id: int,
    creator_user_id: int,
    operator_user_id: int | None = None,
    work_item_id: int | None = None,
) -> TicketRecord:
    log_info(
        "Creating ticket",
        platform_id=platform_id,
        creator_user_id=creator_user_id,
        work_item_id=work_item_id,
    )
    try:
        ticket_id = await db.execute_returning_lastrowid(
            """
            INSERT INTO tickets
                (ticket_type, title, description, priority, status, platform_id,
                 creator_user_id, operator_user_id, work_item_id, version)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, 1)
            """,
            (
                _enum_value(ticket_type),
                title,
                description,
                _enum_value(priority),
                _enum_value(status),
                platform_id,
                creator_user_id,
                operator_user_id,
                work_item_id,
            ),
        )
    except INTEGRITY_ERRORS as exc:
        if work_item_id is not None and is_duplicate_key(exc):
            raise ConflictError(f"Work item {work_item_id} is already linked to a ticket") from exc
        raise
    row = await db.fetch_one("SELECT * FROM tickets WHERE id = %s", (ticket_id,))
    if row:
        return _normalise_ticket(row)
    return _normalise_ticket(
        {
            "id": ticket_id,
            "ticket_type": _enum_value(ticket_type),
            "title": title,
            "description": description,
            "priority": _enum_value(priority),
            "status": _enum_value(status),
            "platform_id": platform_id,
            "creator_user_id": creator_user_id,
            "operator_user_id": operator_user_id,
            "work_item_id": work_item_id,
            "version": 1,
        }
    )


async def get_ticket(ticket_id: int) -> TicketRecord | None:
    row = await db.fetch_one("SELECT * FROM tickets WHERE id = %s", (ticket_id,))
    return _normalise_ticket(row) if row else None


async def get_ticket_by_work_item(work_item_id: int) -> TicketRecord | None:
    row = await db.fetch_one(
        "SELECT * FROM tickets WHERE work_item_id = %s", (work_item_id,)
    )
    return _normalise_ticket(row) if row else None


async def list_tickets(
    *,
    status: str | None = None,
    platform_id: int | None = None,
    operator_user_id: int | None = None,
    creator_user_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[TicketRecord]:
    log_debug(
        "Listing tickets",
        status=status,
        platform_id=platform_id,
        operator_user_id=operator_user_id,
        creator_user_id=creator_user_id,
    )
    where: list[str] = []
    params: list[Any] = []
    if status:
        where.append("status = %s")
        params.append(_enum_value(status))
    if platform_id is not None:
        where.append("platform_id = %s")
        params.append(platform_id)
    if operator_user_id is not None:
        where.append("operator_user_id = %s")
        params.append(operator_user_id)
    if creator_user_id is not None:
        where.append("creator_user_id = %s")
        params.append(creator_user_id)
    where_clause = " WHERE " + " AND ".join(where) if where else ""
    params.extend([limit, offset])
    rows = await db.fetch_all(
        f"""
        SELECT *
        FROM tickets
        {where_clause}
        ORDER BY created_at DESC, id DESC
        LIMIT %s OFFSET %s
        """,
        tuple(params),
    )
    return [_normalise_ticket(row) for row in rows]


async def update_ticket_if_version(
    ticket_id: int, expected_version: int, **fields: Any
) -> int:
    """Apply ``fields`` only while the row still carries ``expected_version``.

    Returns the number of rows written, so ``0`` means the version moved on or the
    ticket vanished. Every successful write bumps ``version`` by one.
    """
    unknown = set(fields) - _UPDATABLE_COLUMNS
    if unknown:
        raise ValueError(f"Unsupported ticket columns: {', '.join(sorted(unknown))}")
    assignments = [f"{column} = %s" for column in fields]
    assignments.append("version = version + 1")
    assignments.append("updated_at = CURRENT_TIMESTAMP")
    params: list[Any] = [_enum_value(value) for value in fields.values()]
    params.extend([ticket_id, expected_version])
    return await db.execute_returning_rowcount(
        f"UPDATE tickets SET {', '.join(assignments)} WHERE id = %s AND version = %s",
        tuple(params),
    )


async def delete_ticket(ticket_id: int) -> bool:
    affected = await db.execute_returning_rowcount(
        "DELETE FROM tickets WHERE id = %s", (ticket_id,)
    )
    return affected > 0


async def count_open_tickets_by_operator(operator_ids: Sequence[int]) -> dict[int, int]:
    """Number of non-closed tickets currently assigned to each operator."""

    ids = [int(operator_id) for operator_id in operator_ids]
    if not ids:
        return {}
    placeholders = ", ".join(["%s"] * len(ids))
    rows = await db.fetch_all(
        f"""
        SELECT operator_user_id, COUNT(*) AS open_count
        FROM tickets
        WHERE status <> %s AND operator_user_id IN ({placeholders})
        GROUP BY operator_user_id
        """,
        tuple(["Closed", *ids]),
    )
    counts = {operator_id: 0 for operator_id in ids}
    for row in rows:
        counts[int(row["operator_user_id"])] = int(row["open_count"])
    return counts

