from __future__ import annotations

from typing import Any

from ticketsync.core.database import db
from ticketsync.repositories._rows import coerce_ints, make_aware

NotificationRecord = dict[str, Any]


def _normalise_user_notification(row: dict[str, Any]) -> NotificationRecord:
    record = dict(row)
    coerce_ints(record, ("id", "notification_id", "receiver_user_id", "ticket_id", "user_id"))
    record["is_read"] = bool(record.get("is_read"))
    if "created_at" in record:
        record["created_at"] = make_aware(record.get("created_at"))
    return record


async def create_notification(*, ticket_id: int, user_id: int, message: str) -> NotificationRecord:
    """Store a notification; ``user_id`` is the actor, not a recipient."""

    notification_id = await db.execute_returning_lastrowid(
        "INSERT INTO notifications (ticket_id, user_id, message) VALUES (%s, %s, %s)",
        (ticket_id, user_id, message),
    )
    return {
        "id": notification_id,
        "ticket_id": ticket_id,
        "user_id": user_id,
        "message": message,
    }


async def create_user_notification(
    *, notification_id: int, receiver_user_id: int
) -> NotificationRecord:
    user_notification_id = await db.execute_returning_lastrowid(
        """
        INSERT INTO user_notifications (notification_id, receiver_user_id, is_read)
        VALUES (%s, %s, 0)
        """,
        (notification_id, receiver_user_id),
    )
    return {
        "id": user_notification_id,
        "notification_id": notification_id,
        "receiver_user_id": receiver_user_id,
        "is_read": False,
    }


_USER_NOTIFICATION_SELECT = """
    SELECT un.id, un.notification_id, un.receiver_user_id, un.is_read,
           n.message, n.ticket_id, n.user_id, n.created_at
    FROM user_notifications AS un
    INNER JOIN notifications AS n ON n.id = un.notification_id
"""


async def list_user_notifications_for_ticket(ticket_id: int) -> list[NotificationRecord]:
    rows = await db.fetch_all(
        f"{_USER_NOTIFICATION_SELECT} WHERE n.ticket_id = %s ORDER BY un.id",
        (ticket_id,),
    )
    return [_normalise_user_notification(row) for row in rows]


async def list_user_notifications_for_receiver(
    receiver_user_id: int, *, unread_only: bool = False
) -> list[NotificationRecord]:
    where = "WHERE un.receiver_user_id = %s"
    if unread_only:
        where += " AND un.is_read = 0"
    rows = await db.fetch_all(
        f"{_USER_NOTIFICATION_SELECT} {where} ORDER BY n.created_at DESC, un.id DESC",
        (receiver_user_id,),
    )
    return [_normalise_user_notification(row) for row in rows]


async def get_user_notification(user_notification_id: int) -> NotificationRecord | None:
    row = await db.fetch_one(
        f"{_USER_NOTIFICATION_SELECT} WHERE un.id = %s",
        (user_notification_id,),
    )
    return _normalise_user_notification(row) if row else None


async def mark_user_notification_read(user_notification_id: int) -> None:
    await db.execute(
        "UPDATE user_notifications SET is_read = 1 WHERE id = %s",
        (user_notification_id,),
    )
